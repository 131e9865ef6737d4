# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import pytest

from orchestrator import call_state
from orchestrator.call_state import CallStateFacade
from orchestrator.enums.state import CallState
from orchestrator.events import EndRequested, EventType, StartRequested
from orchestrator.state_dataclass import CallSnapshot


def start() -> StartRequested:
    return StartRequested(event_type=EventType.START_REQUESTED, ts_ms=0)


def end() -> EndRequested:
    return EndRequested(event_type=EventType.END_REQUESTED, ts_ms=0)


@pytest.fixture(autouse=True)
def _quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(call_state, "log_event", logged.append)
    return logged


def test_subscribers_receive_each_change() -> None:
    facade = CallStateFacade()
    seen: list[CallSnapshot] = []
    facade.subscribe(seen.append)

    facade.dispatch(start())

    assert [s.call_state for s in seen] == [CallState.CONNECTING]
    assert facade.snapshot.call_state is CallState.CONNECTING


def test_rejected_event_does_not_notify() -> None:
    facade = CallStateFacade()
    seen: list[CallSnapshot] = []
    facade.subscribe(seen.append)

    facade.dispatch(end())

    assert seen == []
    assert facade.snapshot == CallSnapshot()


def test_reducer_logs_are_executed(_quiet_logs: list[dict[str, Any]]) -> None:
    facade = CallStateFacade()

    facade.dispatch(start())
    facade.dispatch(start())

    assert [e["decision"] for e in _quiet_logs] == ["state_changed", "transition_rejected"]


def test_unsubscribe_stops_notifications() -> None:
    facade = CallStateFacade()
    seen: list[CallSnapshot] = []
    unsubscribe = facade.subscribe(seen.append)

    unsubscribe()
    facade.dispatch(start())

    assert seen == []
    # Unknown observers are ignored
    facade.unsubscribe(seen.append)


def test_failing_observer_does_not_block_others(_quiet_logs: list[dict[str, Any]]) -> None:
    facade = CallStateFacade()
    seen: list[CallSnapshot] = []

    def broken(_: CallSnapshot) -> None:
        raise ValueError("observer bug")

    facade.subscribe(broken)
    facade.subscribe(seen.append)

    facade.dispatch(start())

    assert len(seen) == 1
    assert any(e.get("event_type") == "OBSERVER_ERROR" for e in _quiet_logs)
