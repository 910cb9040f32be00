"""Shared fixtures: temporary state store, scripted signal source, recording sink."""

import asyncio
from collections import defaultdict
from typing import Dict, List

import pytest

from tierwatch.api import AgentInfo
from tierwatch.config import Config
from tierwatch.core import EdgeTriggered, LevelTriggered, WatcherProfile
from tierwatch.db import StateStore
from tierwatch.models import TargetConfig, TierConfig, WatcherKind


class FakeSource:
    """
    Signal source returning scripted values per target id.

    A scripted Exception instance is raised instead of returned. Once a
    script runs out, its last value repeats.
    """

    def __init__(self, scripts: Dict[str, list] = None, delay: float = 0.0):
        self.scripts: Dict[str, list] = defaultdict(list, scripts or {})
        self.calls: List[str] = []
        self.delay = delay
        self._last: Dict[str, object] = {}

    def script(self, target_id: str, *values):
        self.scripts[target_id].extend(values)

    async def fetch(self, target_id: str) -> float:
        self.calls.append(target_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        script = self.scripts[target_id]
        value = script.pop(0) if script else self._last.get(target_id, 0.0)
        self._last[target_id] = value
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_portfolio_value(self, address: str) -> float:
        return await self.fetch(address)

    async def fetch_token_price(self, token: str) -> float:
        return await self.fetch(token)

    async def fetch_base_token_price(self, target_id: str = None) -> float:
        return await self.fetch(target_id)

    async def get_agent_info(self, token: str) -> AgentInfo:
        return AgentInfo(token_contract=token, name="Agent", ticker="AGT")

    def call_count(self, target_id: str) -> int:
        return self.calls.count(target_id)


class RecordingSink:
    """Alert sink that keeps everything it is given."""

    def __init__(self):
        self.delivered = []
        self.statuses = []
        self.on_delivered = None

    def deliver(self, record):
        self.delivered.append(record)

    def send_service_status(self, status, details=""):
        self.statuses.append((status, details))
        return True


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll until predicate() is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


def make_profile(source: FakeSource, kind: WatcherKind = WatcherKind.TOKEN, level: bool = False, **kwargs):
    policies = (EdgeTriggered(), LevelTriggered()) if level else (EdgeTriggered(),)
    return WatcherProfile(
        kind=kind,
        category=kwargs.pop("category", "price"),
        fetch=source.fetch,
        policies=policies,
        formatter=lambda target, decision, prev, cur: f"{target.display_name} {decision.alert_type} {prev}->{cur}",
        **kwargs,
    )


def token_config(target_id: str = "0xtoken", minor: float = 2, major: float = 10, critical: float = 20,
                 interval: int = 60, **kwargs) -> TargetConfig:
    return TargetConfig(
        target_id=target_id,
        display_name=kwargs.pop("display_name", target_id.upper()),
        tiers=TierConfig(minor, major, critical),
        interval_seconds=interval,
        **kwargs,
    )


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "tierwatch.db")


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def settings(tmp_path):
    return Config(data_dir=tmp_path, log_dir=tmp_path / "logs").validate()
