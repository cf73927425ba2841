"""Unit tests for Session and OrderItem state."""

import pytest

from ordersync.models import OrderItem, Session, generate_item_id


def make_session(created_at: float = 1000.0) -> Session:
    return Session(code="ABC123", created_at=created_at, tax_percent=13)


class TestOrderItem:
    def test_defaults(self) -> None:
        item = OrderItem(item="Pizza")
        assert item.quantity == 1
        assert item.is_ordered is False
        assert item.price is None
        assert len(item.id) == 12

    def test_ids_are_unique(self) -> None:
        assert len({generate_item_id() for _ in range(500)}) == 500

    def test_toggle_flips_status(self) -> None:
        item = OrderItem(item="Pizza")
        assert item.toggle() is True
        assert item.is_ordered is True
        assert item.toggle() is False
        assert item.is_ordered is False

    def test_to_wire(self) -> None:
        """Test wire serialization uses camelCase and an ISO UTC timestamp."""
        item = OrderItem(
            item="Pizza",
            quantity=2,
            name="Sam",
            price=12.5,
            notes="extra cheese",
            id="abc",
            timestamp=0.25,
        )
        assert item.to_wire() == {
            "id": "abc",
            "name": "Sam",
            "item": "Pizza",
            "quantity": 2,
            "price": 12.5,
            "notes": "extra cheese",
            "isOrdered": False,
            "timestamp": "1970-01-01T00:00:00.250Z",
        }


class TestSession:
    def test_expiry_is_strictly_after_timeout(self) -> None:
        session = make_session(created_at=1000.0)
        assert not session.is_expired(now=1100.0, timeout_seconds=100)
        assert session.is_expired(now=1100.001, timeout_seconds=100)
        assert session.age(1100.0) == 100.0

    def test_add_find_remove(self) -> None:
        session = make_session()
        first = OrderItem(item="Pizza")
        second = OrderItem(item="Salad")
        session.add_item(first)
        session.add_item(second)

        assert session.find_item(second.id) is second
        assert session.find_item("missing") is None

        assert session.remove_item(first.id) is True
        assert session.remove_item(first.id) is False
        assert session.items == [second]

    def test_add_duplicate_id_rejected(self) -> None:
        session = make_session()
        session.add_item(OrderItem(item="Pizza", id="same"))
        with pytest.raises(ValueError, match="Duplicate order item id"):
            session.add_item(OrderItem(item="Salad", id="same"))

    def test_snapshot_preserves_insertion_order(self) -> None:
        session = make_session()
        for name in ("Pizza", "Salad", "Soda"):
            session.add_item(OrderItem(item=name))

        snapshot = session.snapshot()
        assert [order["item"] for order in snapshot["orders"]] == ["Pizza", "Salad", "Soda"]
        assert snapshot["taxPercent"] == 13

    def test_sessions_hash_by_identity(self) -> None:
        """Two sessions with equal fields are still distinct records."""
        assert make_session() != make_session()
        assert len({make_session(), make_session()}) == 2
