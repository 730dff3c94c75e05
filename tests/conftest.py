import asyncio
import sys
from pathlib import Path
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from ghostline.config import BOT_TOKEN_KEY, Config
from ghostline.telegram.models import BotIdentity, ConnectionSettings, Session

TEST_TOKEN = "123456789:AAHfakeTokenForTests"


class FakeTransport:
    """In-memory transport. ``receive_script`` items are event lists or exceptions."""

    def __init__(self, open_errors=None, receive_script=None, identity: Optional[BotIdentity] = None):
        self.open_errors = list(open_errors or [])
        self.receive_script = list(receive_script or [])
        self.identity = identity or BotIdentity(id=1, username="ghostline_bot", first_name="Ghostline")
        self.open_calls = 0
        self.close_calls = 0
        self.receive_calls = 0
        self.commands = None
        self.sent: List[tuple] = []
        self.answered: List[tuple] = []
        self.send_error: Optional[Exception] = None
        self.answer_delay = 0.0
        self.commands_gate: Optional[asyncio.Event] = None

    async def open(self):
        self.open_calls += 1
        if self.open_errors:
            raise self.open_errors.pop(0)

    async def get_me(self):
        return self.identity

    async def set_commands(self, commands):
        if self.commands_gate is not None:
            await self.commands_gate.wait()
        self.commands = list(commands)

    async def receive(self, timeout):
        self.receive_calls += 1
        if self.receive_script:
            item = self.receive_script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        # Idle long poll until cancelled
        await asyncio.sleep(3600)
        return []

    async def send_message(self, chat_id, text, menu=None):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, text, menu))

    async def answer_callback(self, query_id, text=None):
        if self.answer_delay:
            await asyncio.sleep(self.answer_delay)
        self.answered.append((query_id, text))

    async def close(self):
        self.close_calls += 1


class FakeOutbox:
    def __init__(self):
        self.sent = []
        self.acks = []
        self.calls = []

    async def send(self, chat_id, response):
        self.sent.append(response)
        self.calls.append("send")
        return True

    async def acknowledge(self, event, text=None):
        self.acks.append((event, text))
        self.calls.append("ack")
        return True

    @property
    def bodies(self):
        return [response.body for response in self.sent]


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("GHOSTLINE_ENCRYPTION_KEY", raising=False)
    cfg = Config(config_file=tmp_path / "config.json", env_file=None, environ={})
    cfg.load()
    return cfg


@pytest.fixture
def configured(config):
    config.set(BOT_TOKEN_KEY, TEST_TOKEN)
    return config


@pytest.fixture
def session():
    return Session()


@pytest.fixture
def settings():
    return ConnectionSettings()


@pytest.fixture
def audit():
    return MagicMock()


@pytest.fixture
def control():
    mock = MagicMock()
    mock.execute_command = AsyncMock(return_value={"success": True, "message": "ok"})
    mock.get_system_status = AsyncMock(return_value={
        "runtime": "2h 5m",
        "status": "operational",
        "version": "4.1.0",
        "modules": {
            "harvester": {"status": "active", "earnings": 0.125},
            "telegram": {"status": "connected"},
        },
        "security": {"events": 3},
    })
    mock.get_detailed_metrics = AsyncMock(return_value={
        "system": {"uptime": 7_500_000, "activeModules": 2},
        "security": {"securityLevel": "HIGH"},
        "harvester": {
            "tasksCompleted": 14,
            "totalEarnings": 0.5,
            "successRate": "93%",
            "scraping": {"successRate": "88%"},
        },
        "performance": {"tasksPerHour": "6.7", "hourlyEarnings": "0.2400", "successRate": "91%"},
    })
    return mock


def audited_events(audit) -> list:
    """Event types passed to a MagicMock audit logger, in call order."""
    return [c.args[0] for c in audit.log.call_args_list]
