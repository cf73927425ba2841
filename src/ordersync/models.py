"""Session and order item state.

A Session is the in-memory record shared by every participant that joined
the same code: its ordered item list, tax rate, creation time and the live
connections that receive broadcasts.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ordersync.connection import ClientConnection


def generate_item_id() -> str:
    """Generate a unique, URL-safe order item identifier."""
    return uuid.uuid4().hex[:12]


@dataclass
class OrderItem:
    """One line entry in a session's order.

    Attributes:
        id: Server-generated identifier, immutable
        item: Product name (trimmed, non-empty)
        quantity: Positive whole number
        name: Participant display name
        price: Unit price rounded to 2 decimals
        notes: Free-form notes
        is_ordered: Whether the item has been ordered at the counter
        timestamp: Creation time as UNIX seconds, immutable
    """

    item: str
    quantity: int = 1
    name: str | None = None
    price: float | None = None
    notes: str | None = None
    is_ordered: bool = False
    id: str = field(default_factory=generate_item_id)
    timestamp: float = field(default_factory=time.time)

    def toggle(self) -> bool:
        """Flip the ordered status and return the new value."""
        self.is_ordered = not self.is_ordered
        return self.is_ordered

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON shape clients render."""
        return {
            "id": self.id,
            "name": self.name,
            "item": self.item,
            "quantity": self.quantity,
            "price": self.price,
            "notes": self.notes,
            "isOrdered": self.is_ordered,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
        }


@dataclass(eq=False)
class Session:
    """Shared state for one group-ordering session.

    Mutations and the broadcast that follows them happen while holding
    ``lock`` so that every connection observes changes in application order.
    """

    code: str
    created_at: float
    tax_percent: float
    items: list[OrderItem] = field(default_factory=list)
    connections: set["ClientConnection"] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def age(self, now: float) -> float:
        """Seconds elapsed since creation."""
        return now - self.created_at

    def is_expired(self, now: float, timeout_seconds: float) -> bool:
        """Check whether the session has outlived the timeout."""
        return self.age(now) > timeout_seconds

    def find_item(self, item_id: str) -> OrderItem | None:
        """Return the item with ``item_id`` if present."""
        for order_item in self.items:
            if order_item.id == item_id:
                return order_item
        return None

    def add_item(self, order_item: OrderItem) -> None:
        """Append an item, keeping ids unique."""
        if self.find_item(order_item.id) is not None:
            raise ValueError(f"Duplicate order item id: {order_item.id}")
        self.items.append(order_item)

    def remove_item(self, item_id: str) -> bool:
        """Remove the item with ``item_id``.

        Returns:
            True if an item was removed, False if none matched
        """
        before = len(self.items)
        self.items = [order_item for order_item in self.items if order_item.id != item_id]
        return len(self.items) != before

    def snapshot(self) -> dict[str, Any]:
        """Full-state payload for an ``orders`` message."""
        return {
            "orders": [order_item.to_wire() for order_item in self.items],
            "taxPercent": self.tax_percent,
        }
