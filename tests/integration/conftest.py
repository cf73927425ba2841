"""Integration test fixtures.

Provides:
- Free port discovery for the WebSocket and HTTP listeners
- A fully started OrderSyncServer bound to localhost
"""

import socket
from collections.abc import AsyncGenerator

import pytest

from ordersync.config import (
    HttpConfig,
    OrderSyncConfig,
    SessionConfig,
    TransportConfig,
    WebSocketConfig,
)
from ordersync.metrics import MetricsCollector
from ordersync.server import OrderSyncServer
from tests.helpers.ws_fakes import SESSION_TIMEOUT_S, FakeClock


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Returns:
        Available port number

    Notes:
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


@pytest.fixture
def server_config() -> OrderSyncConfig:
    """Server configuration on free localhost ports."""
    return OrderSyncConfig(
        transport=TransportConfig(
            websocket=WebSocketConfig(host="127.0.0.1", port=get_free_port(), send_timeout_s=2.0)
        ),
        http=HttpConfig(host="127.0.0.1", port=get_free_port()),
        session=SessionConfig(timeout_seconds=SESSION_TIMEOUT_S, sweep_interval_seconds=3600),
        graceful_shutdown_timeout_s=5,
    )


@pytest.fixture
async def server(
    server_config: OrderSyncConfig, clock: FakeClock
) -> AsyncGenerator[OrderSyncServer, None]:
    """Started server with a fake clock; stopped on teardown."""
    server = OrderSyncServer(server_config, clock=clock, metrics=MetricsCollector())
    await server.start()
    try:
        yield server
    finally:
        await server.stop()
