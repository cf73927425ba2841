"""ordersync: realtime shared group-ordering sessions.

Participants join a session by code over WebSocket and see a live, consistent
view of the order list, tax rate and per-item ordered status.
"""

from ordersync.config import OrderSyncConfig
from ordersync.server import OrderSyncServer

__all__ = ["OrderSyncConfig", "OrderSyncServer"]
