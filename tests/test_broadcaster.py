from __future__ import annotations

import asyncio

import pytest

from fakes import RecordingObserver, StuckObserver
from scenario_runner.engine.broadcaster import EventBroadcaster
from scenario_runner.models.events import ExecutionEvent
from scenario_runner.models.session import Session, SessionStatus


def _event(**overrides) -> ExecutionEvent:
    session = Session(id=4, project_id=1, status=SessionStatus.RUNNING, current_step=2, total_steps=5)
    return ExecutionEvent.for_session("execution_update", session, "Clicking #submit", **overrides)


@pytest.mark.asyncio
async def test_every_observer_gets_every_event():
    broadcaster = EventBroadcaster()
    observers = [RecordingObserver(), RecordingObserver()]
    for observer in observers:
        broadcaster.add(observer)

    delivered = await broadcaster.publish(_event())

    assert delivered == 2
    for observer in observers:
        assert observer.messages == [{
            "type": "execution_update",
            "sessionId": 4,
            "status": "running",
            "currentStep": 2,
            "totalSteps": 5,
            "message": "Clicking #submit",
        }]


@pytest.mark.asyncio
async def test_unset_fields_are_omitted():
    broadcaster = EventBroadcaster()
    observer = RecordingObserver()
    broadcaster.add(observer)

    await broadcaster.publish(ExecutionEvent(type="execution_error", session_id=9, message="boom"))

    assert observer.messages == [{"type": "execution_error", "sessionId": 9, "message": "boom"}]


@pytest.mark.asyncio
async def test_closed_and_failing_observers_are_skipped():
    broadcaster = EventBroadcaster()
    healthy = RecordingObserver()
    closed = RecordingObserver(closed=True)
    broken = RecordingObserver(error=ConnectionResetError("peer went away"))
    for observer in (closed, broken, healthy):
        broadcaster.add(observer)

    delivered = await broadcaster.publish(_event())
    await broadcaster.publish(_event(current_step=3))

    assert delivered == 1
    assert [m["currentStep"] for m in healthy.messages] == [2, 3]
    assert closed.messages == []
    assert broken.messages == []


@pytest.mark.asyncio
async def test_removed_observer_gets_nothing():
    broadcaster = EventBroadcaster()
    observer = RecordingObserver()
    broadcaster.add(observer)
    broadcaster.remove(observer)

    assert await broadcaster.publish(_event()) == 0
    assert broadcaster.observer_count == 0


@pytest.mark.asyncio
async def test_observer_that_never_accepts_is_dropped():
    broadcaster = EventBroadcaster(send_timeout=0.05)
    stuck = StuckObserver()
    healthy = RecordingObserver()
    broadcaster.add(stuck)
    broadcaster.add(healthy)

    delivered = await asyncio.wait_for(broadcaster.publish(_event()), 1)
    await asyncio.wait_for(broadcaster.publish(_event(current_step=3)), 1)

    assert delivered == 1
    assert [m["currentStep"] for m in healthy.messages] == [2, 3]
    assert stuck.attempts == 1
    assert broadcaster.observer_count == 1
