"""WebSocket message protocol definitions.

Defines Pydantic models for WebSocket message serialization/deserialization.
Messages are JSON-encoded text frames; field names on the wire are camelCase.
"""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class ProtocolError(Exception):
    """Raised when an inbound frame cannot be decoded into a message."""

    def __init__(self, message: str, code: str = "INVALID_MESSAGE") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# Client → Server


class JoinMessage(_WireModel):
    """Client → Server: bind this connection to a session."""

    type: Literal["join"] = "join"
    session_id: str = Field(..., alias="sessionId", min_length=1, description="Session code")


class OrderPayload(_WireModel):
    """Raw order fields; bounds are checked by ordersync.validation."""

    item: Any = None
    quantity: Any = None
    price: Any = None
    name: Any = None
    notes: Any = None


class AddOrderMessage(_WireModel):
    """Client → Server: append an item to the session.

    Fields are normally nested under ``order``; a frame that carries them at
    the top level instead is accepted too.
    """

    type: Literal["add_order"] = "add_order"
    order: OrderPayload

    @model_validator(mode="before")
    @classmethod
    def lift_flat_fields(cls, data: Any) -> Any:
        if isinstance(data, dict) and "order" not in data:
            fields = OrderPayload.model_fields
            return {**data, "order": {k: v for k, v in data.items() if k in fields}}
        return data


class RemoveOrderMessage(_WireModel):
    """Client → Server: remove an item by id."""

    type: Literal["remove_order"] = "remove_order"
    order_id: str = Field(..., alias="orderId")


class ToggleOrderStatusMessage(_WireModel):
    """Client → Server: flip an item's ordered status."""

    type: Literal["toggle_order_status"] = "toggle_order_status"
    order_id: str = Field(..., alias="orderId")


class SetTaxMessage(_WireModel):
    """Client → Server: change the session tax rate."""

    type: Literal["set_tax"] = "set_tax"
    tax_percent: Any = Field(default=None, alias="taxPercent")


# Server → Client


class OrdersMessage(_WireModel):
    """Server → Client: full-state snapshot."""

    type: Literal["orders"] = "orders"
    orders: list[dict[str, Any]] = Field(default_factory=list)
    tax_percent: float = Field(..., alias="taxPercent")


class ErrorMessage(_WireModel):
    """Server → Client: rejection of the sender's last message."""

    type: Literal["error"] = "error"
    message: str = Field(..., description="Error description")
    code: str = Field(default="INTERNAL_ERROR", description="Error code")


class SessionExpiredMessage(_WireModel):
    """Server → Client: the session timed out and the connection will close."""

    type: Literal["session_expired"] = "session_expired"
    message: str = Field(default="Session has expired")


# Union type for all client → server messages
ClientMessage = (
    JoinMessage | AddOrderMessage | RemoveOrderMessage | ToggleOrderStatusMessage | SetTaxMessage
)

# Union type for all server → client messages
ServerMessage = OrdersMessage | ErrorMessage | SessionExpiredMessage

CLIENT_MESSAGE_TYPES: dict[str, type[BaseModel]] = {
    "join": JoinMessage,
    "add_order": AddOrderMessage,
    "remove_order": RemoveOrderMessage,
    "toggle_order_status": ToggleOrderStatusMessage,
    "set_tax": SetTaxMessage,
}


def parse_client_message(raw: str | bytes) -> ClientMessage | None:
    """Decode one inbound frame.

    Args:
        raw: JSON text received from the client

    Returns:
        Typed message, or None if the ``type`` is not recognized

    Raises:
        ProtocolError: If the frame is not JSON, not an object, or does not
            match the schema of its declared type
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}", code="INVALID_JSON") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    message_type = data.get("type")
    model = CLIENT_MESSAGE_TYPES.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        return None

    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ProtocolError(f"Invalid {data['type']} message: {fields}") from e


def encode_message(message: ServerMessage) -> str:
    """Serialize a server message with wire (camelCase) field names."""
    return message.model_dump_json(by_alias=True)
