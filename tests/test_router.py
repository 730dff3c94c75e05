import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from conftest import FakeOutbox, audited_events

from ghostline.audit import AuditEventType
from ghostline.config import CHAT_ID_KEY
from ghostline.control import ControlSystemError
from ghostline.telegram.commands import (
    CONFIRMATION_EXPIRED_TEXT,
    ERROR_ACK,
    ERROR_TEXT,
    METRICS_ERROR_TEXT,
    NOTHING_TO_CONFIRM_TEXT,
    STATUS_ERROR_TEXT,
    UNAUTHORIZED_ACK,
    UNAUTHORIZED_TEXT,
    format_usage_text,
)
from ghostline.telegram.confirmation import ConfirmationFlow
from ghostline.telegram.models import Action, CallbackAction, ConfirmationState, TextMessage
from ghostline.telegram.router import CommandRouter

OPERATOR = "42"
STRANGER = "99"

MAIN_MENU_ACTIONS = ["status", "control", "start_harvester", "stop_harvester", "metrics", "help"]


def text(chat_id, body):
    return TextMessage(chat_id=chat_id, text=body)


def press(chat_id, action_id, query_id="q1"):
    return CallbackAction(chat_id=chat_id, message_ref=10, action_id=action_id, query_id=query_id)


@pytest.fixture
def outbox():
    return FakeOutbox()


@pytest.fixture
def flow(session):
    # No expiry task unless a test asks for one
    return ConfirmationFlow(session, timeout_seconds=0)


@pytest.fixture
def router(session, control, outbox, config, flow, audit):
    return CommandRouter(session, control, outbox, config=config, confirmations=flow, audit=audit)


@pytest.fixture
def bound(session):
    session.authorized_chat_id = OPERATOR
    session.connected = True
    return session


class TestClassify:
    def test_text_commands(self):
        assert CommandRouter.classify(text(OPERATOR, "/start")) == Action.START
        assert CommandRouter.classify(text(OPERATOR, "/status@ghostline_bot")) == Action.STATUS
        assert CommandRouter.classify(text(OPERATOR, "hello")) is None

    def test_callbacks(self):
        assert CommandRouter.classify(press(OPERATOR, "metrics")) == Action.METRICS
        assert CommandRouter.classify(press(OPERATOR, "self_destruct")) is None

    def test_every_action_has_a_handler(self, router):
        assert set(router._handlers) == set(Action)


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_first_contact_binds_operator(self, router, session, outbox, config, audit):
        await router.on_event(text(OPERATOR, "/start"))

        assert session.authorized_chat_id == OPERATOR
        assert config.get(CHAT_ID_KEY) == OPERATOR
        with open(config.config_file) as f:
            assert json.load(f)[CHAT_ID_KEY] == OPERATOR
        assert AuditEventType.OPERATOR_BOUND in audited_events(audit)

        assert len(outbox.sent) == 1
        assert outbox.sent[0].chat_id == OPERATOR
        assert outbox.sent[0].action_ids() == MAIN_MENU_ACTIONS

    @pytest.mark.asyncio
    async def test_binding_is_not_replaced(self, router, session):
        await router.on_event(text(OPERATOR, "/start"))
        await router.on_event(text(STRANGER, "/start"))
        assert session.authorized_chat_id == OPERATOR

    @pytest.mark.asyncio
    async def test_stranger_gets_refusal_only(self, router, bound, control, outbox, audit):
        await router.on_event(text(STRANGER, "/status"))

        control.get_system_status.assert_not_awaited()
        control.execute_command.assert_not_awaited()
        assert [(r.chat_id, r.body) for r in outbox.sent] == [(STRANGER, UNAUTHORIZED_TEXT)]
        assert AuditEventType.UNAUTHORIZED_ACCESS in audited_events(audit)

    @pytest.mark.asyncio
    async def test_stranger_button_press_is_refused(self, router, bound, control, outbox):
        event = press(STRANGER, "start_harvester")
        await router.on_event(event)

        control.execute_command.assert_not_awaited()
        assert outbox.acks == [(event, UNAUTHORIZED_ACK)]


class TestViews:
    @pytest.mark.asyncio
    async def test_status(self, router, bound, outbox):
        await router.on_event(text(OPERATOR, "/status"))

        body = outbox.sent[0].body
        assert "SYSTEM STATUS" in body
        assert "Harvester: active" in body
        assert "0.1250 ETH" in body
        assert "Security Events: 3" in body

    @pytest.mark.asyncio
    async def test_status_failure_degrades_to_error_text(self, router, bound, control, outbox):
        control.get_system_status.side_effect = ControlSystemError("down")
        await router.on_event(press(OPERATOR, "status"))
        assert outbox.bodies == [STATUS_ERROR_TEXT]

    @pytest.mark.asyncio
    async def test_metrics(self, router, bound, outbox):
        await router.on_event(press(OPERATOR, "metrics"))

        response = outbox.sent[0]
        assert "System Uptime: 2h 5m" in response.body
        assert "Tasks: 14" in response.body
        assert response.action_ids() == ["control"]

    @pytest.mark.asyncio
    async def test_metrics_failure(self, router, bound, control, outbox):
        control.get_detailed_metrics.side_effect = ControlSystemError("down")
        await router.on_event(press(OPERATOR, "metrics"))
        assert outbox.bodies == [METRICS_ERROR_TEXT]

    @pytest.mark.asyncio
    async def test_help_and_control(self, router, bound, outbox):
        await router.on_event(text(OPERATOR, "/help"))
        await router.on_event(press(OPERATOR, "control"))

        assert "HELP" in outbox.sent[0].body
        assert outbox.sent[0].action_ids() == ["menu"]
        assert outbox.sent[1].action_ids() == [
            "start_harvester", "stop_harvester", "metrics", "emergency_stop", "menu",
        ]

    @pytest.mark.asyncio
    async def test_unknown_text_gets_usage(self, router, bound, outbox):
        await router.on_event(text(OPERATOR, "what can you do?"))
        assert outbox.bodies == [format_usage_text()]

    @pytest.mark.asyncio
    async def test_unknown_callback_is_only_acknowledged(self, router, bound, outbox):
        event = press(OPERATOR, "self_destruct")
        await router.on_event(event)
        assert outbox.sent == []
        assert outbox.acks == [(event, None)]


class TestCommands:
    @pytest.mark.asyncio
    async def test_start_harvester(self, router, bound, control, outbox, audit):
        control.execute_command.return_value = {"success": True, "message": "Harvester online"}
        await router.on_event(press(OPERATOR, "start_harvester"))

        control.execute_command.assert_awaited_once_with("start_harvester")
        assert outbox.bodies == [
            "🔄 Starting harvester...",
            "✅ harvester started successfully!\nHarvester online",
        ]
        assert AuditEventType.COMMAND_EXECUTED in audited_events(audit)

    @pytest.mark.asyncio
    async def test_stop_harvester_failure_passes_message_through(self, router, bound, control, outbox):
        control.execute_command.return_value = {"success": False, "message": "not running"}
        await router.on_event(press(OPERATOR, "stop_harvester"))

        control.execute_command.assert_awaited_once_with("stop_harvester")
        assert outbox.bodies[-1] == "❌ Failed to stop harvester:\nnot running"

    @pytest.mark.asyncio
    async def test_control_system_unavailable(self, router, bound, control, outbox):
        control.execute_command.side_effect = ControlSystemError("connection refused")
        await router.on_event(press(OPERATOR, "start_harvester"))
        assert outbox.bodies[-1].startswith("❌ Error trying to start harvester")


class TestEmergencyStop:
    @pytest.mark.asyncio
    async def test_request_then_confirm(self, router, bound, flow, control, outbox, audit):
        await router.on_event(press(OPERATOR, "emergency_stop"))

        assert flow.is_awaiting(OPERATOR)
        control.execute_command.assert_not_awaited()
        assert outbox.sent[-1].action_ids() == ["confirm_emergency", "control"]

        control.execute_command.return_value = {"success": True, "message": "All modules stopped"}
        await router.on_event(press(OPERATOR, "confirm_emergency", query_id="q2"))

        control.execute_command.assert_awaited_once_with("emergency_stop")
        assert outbox.bodies[-1] == "✅ Emergency stop completed: All modules stopped"
        assert not flow.is_awaiting(OPERATOR)
        events = audited_events(audit)
        assert events.index(AuditEventType.EMERGENCY_REQUESTED) < events.index(AuditEventType.EMERGENCY_CONFIRMED)

    @pytest.mark.asyncio
    async def test_confirm_without_request_does_nothing(self, router, bound, control, outbox):
        await router.on_event(press(OPERATOR, "confirm_emergency"))

        control.execute_command.assert_not_awaited()
        assert outbox.bodies == [NOTHING_TO_CONFIRM_TEXT]

    @pytest.mark.asyncio
    async def test_other_action_cancels_request(self, router, bound, flow, control, outbox, audit):
        await router.on_event(press(OPERATOR, "emergency_stop"))
        await router.on_event(press(OPERATOR, "status"))
        assert not flow.is_awaiting(OPERATOR)
        assert AuditEventType.EMERGENCY_CANCELLED in audited_events(audit)

        await router.on_event(press(OPERATOR, "confirm_emergency"))
        control.execute_command.assert_not_awaited()
        assert outbox.bodies[-1] == NOTHING_TO_CONFIRM_TEXT

    @pytest.mark.asyncio
    async def test_cancel_button_returns_to_control_panel(self, router, bound, flow, control, outbox):
        await router.on_event(press(OPERATOR, "emergency_stop"))
        await router.on_event(press(OPERATOR, "control"))

        assert not flow.is_awaiting(OPERATOR)
        assert "CONTROL PANEL" in outbox.bodies[-1]
        control.execute_command.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unrecognized_input_keeps_request(self, router, bound, flow):
        await router.on_event(press(OPERATOR, "emergency_stop"))
        await router.on_event(text(OPERATOR, "hmm"))
        assert flow.is_awaiting(OPERATOR)

    @pytest.mark.asyncio
    async def test_request_expires(self, session, control, outbox, config, audit):
        session.authorized_chat_id = OPERATOR
        session.connected = True
        flow = ConfirmationFlow(session, timeout_seconds=0.01)
        router = CommandRouter(session, control, outbox, config=config, confirmations=flow, audit=audit)

        await router.on_event(press(OPERATOR, "emergency_stop"))
        await asyncio.sleep(0.05)

        assert not flow.is_awaiting(OPERATOR)
        assert outbox.bodies[-1] == CONFIRMATION_EXPIRED_TEXT
        assert AuditEventType.EMERGENCY_EXPIRED in audited_events(audit)

        await router.on_event(press(OPERATOR, "confirm_emergency"))
        control.execute_command.assert_not_awaited()


class TestAcknowledgment:
    @pytest.mark.asyncio
    async def test_each_callback_acknowledged_once(self, router, bound, outbox):
        events = [press(OPERATOR, "status", "q1"), press(OPERATOR, "metrics", "q2"), press(OPERATOR, "menu", "q3")]
        for event in events:
            await router.on_event(event)
        assert [event for event, _ in outbox.acks] == events

    @pytest.mark.asyncio
    async def test_handler_failure_is_reported_and_acknowledged(self, router, bound, outbox):
        router._handlers[Action.HELP] = AsyncMock(side_effect=RuntimeError("boom"))
        event = press(OPERATOR, "help")

        await router.on_event(event)

        assert outbox.bodies == [ERROR_TEXT]
        assert outbox.acks == [(event, None)]

    @pytest.mark.asyncio
    async def test_button_acknowledged_before_control_call(self, router, bound, control, outbox):
        await router.on_event(press(OPERATOR, "start_harvester"))

        assert outbox.calls == ["ack", "send", "send"]
        assert len(outbox.acks) == 1

    @pytest.mark.asyncio
    async def test_failure_before_dispatch_gets_error_ack(self, router, bound, outbox):
        router._authorize = AsyncMock(side_effect=RuntimeError("config unavailable"))
        event = press(OPERATOR, "status")

        await router.on_event(event)

        assert outbox.bodies == [ERROR_TEXT]
        assert outbox.acks == [(event, ERROR_ACK)]

    @pytest.mark.asyncio
    async def test_scenario_bind_then_refuse_stranger(self, router, session, control, outbox):
        await router.on_event(text(OPERATOR, "/start"))
        await router.on_event(press(STRANGER, "status"))

        assert session.authorized_chat_id == OPERATOR
        control.get_system_status.assert_not_awaited()
        assert outbox.sent[0].action_ids() == MAIN_MENU_ACTIONS
        assert outbox.sent[1].chat_id == STRANGER
        assert outbox.sent[1].body == UNAUTHORIZED_TEXT


class TestOperatorScenario:
    @pytest.mark.asyncio
    async def test_bind_refuse_stranger_then_emergency_stop(self, router, session, flow, control, outbox):
        session.connected = True
        await router.on_event(text(OPERATOR, "/start"))
        assert outbox.sent[-1].action_ids() == MAIN_MENU_ACTIONS

        await router.on_event(text(STRANGER, "/status"))
        control.get_system_status.assert_not_awaited()
        assert (outbox.sent[-1].chat_id, outbox.sent[-1].body) == (STRANGER, UNAUTHORIZED_TEXT)

        control.execute_command.return_value = {"success": True, "message": "stopped"}
        await router.on_event(press(OPERATOR, "emergency_stop", "q1"))
        await router.on_event(press(OPERATOR, "confirm_emergency", "q2"))

        control.execute_command.assert_awaited_once_with("emergency_stop")
        assert "stopped" in outbox.sent[-1].body
        assert flow.state(OPERATOR) is ConfirmationState.IDLE
        assert session.authorized_chat_id == OPERATOR
