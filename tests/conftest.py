"""Shared fixtures for unit and integration tests."""

import pytest

from ordersync.broadcast import Broadcaster
from ordersync.config import LimitsConfig, SessionConfig
from ordersync.handler import MessageHandler
from ordersync.metrics import MetricsCollector
from ordersync.registry import ConnectionRegistry
from ordersync.store import SessionStore
from ordersync.sweeper import ExpirySweeper
from tests.helpers.ws_fakes import SESSION_TIMEOUT_S, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock."""
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh metrics collector per test."""
    return MetricsCollector()


@pytest.fixture
def limits() -> LimitsConfig:
    """Default item and tax bounds."""
    return LimitsConfig()


@pytest.fixture
def store(clock: FakeClock, limits: LimitsConfig, metrics: MetricsCollector) -> SessionStore:
    """Session store with a 4 hour timeout and a fake clock."""
    return SessionStore(
        session_config=SessionConfig(timeout_seconds=SESSION_TIMEOUT_S),
        limits=limits,
        clock=clock,
        metrics=metrics,
    )


@pytest.fixture
def registry() -> ConnectionRegistry:
    """Empty connection registry."""
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry: ConnectionRegistry, metrics: MetricsCollector) -> Broadcaster:
    """Broadcast engine."""
    return Broadcaster(registry, metrics=metrics)


@pytest.fixture
def sweeper(
    store: SessionStore, registry: ConnectionRegistry, metrics: MetricsCollector
) -> ExpirySweeper:
    """Expiry sweeper with a short interval."""
    return ExpirySweeper(store, registry, interval_seconds=0.01, metrics=metrics)


@pytest.fixture
def handler(
    store: SessionStore,
    registry: ConnectionRegistry,
    broadcaster: Broadcaster,
    sweeper: ExpirySweeper,
    limits: LimitsConfig,
    metrics: MetricsCollector,
) -> MessageHandler:
    """Message handler wired to the fixtures above."""
    return MessageHandler(
        store, registry, broadcaster, sweeper=sweeper, limits=limits, metrics=metrics
    )
