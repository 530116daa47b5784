"""Tests for follow-up rescans."""

from __future__ import annotations

from aictx.followup import FollowUpScheduler
from aictx.models import AIResponse

from conftest import assistant_msg


class FakeTimer:
    """Records its callback instead of starting a thread."""

    created: list["FakeTimer"] = []

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function(*self.args)


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_scheduler(runs: list[str], clock: Clock, **kwargs) -> FollowUpScheduler:
    FakeTimer.created = []
    return FollowUpScheduler(
        lambda r: runs.append(r.id),
        interval_s=30.0,
        duration_s=100.0,
        clock=clock,
        timer_factory=FakeTimer,
        **kwargs,
    )


def test_rescans_until_expired() -> None:
    runs: list[str] = []
    clock = Clock()
    scheduler = make_scheduler(runs, clock)
    scheduler.track(assistant_msg("b1", "c1", 1_000))

    for now in (30.0, 60.0, 90.0):
        clock.now = now
        FakeTimer.created[-1].fire()
    assert runs == ["b1", "b1", "b1"]
    assert scheduler.pending

    clock.now = 120.0
    FakeTimer.created[-1].fire()
    assert runs == ["b1", "b1", "b1"]
    assert not scheduler.pending
    assert scheduler.active_response_id is None


def test_newer_response_supersedes() -> None:
    runs: list[str] = []
    clock = Clock()
    scheduler = make_scheduler(runs, clock)
    scheduler.track(assistant_msg("b1", "c1", 1_000))
    first = FakeTimer.created[-1]

    scheduler.track(assistant_msg("b2", "c1", 2_000))
    assert first.cancelled
    assert scheduler.active_response_id == "b2"

    # A stale timer that fires anyway does nothing
    first.fire()
    FakeTimer.created[-1].fire()
    assert runs == ["b2"]


def test_same_response_is_not_rescheduled() -> None:
    clock = Clock()
    scheduler = make_scheduler([], clock)
    response = assistant_msg("b1", "c1", 1_000)
    scheduler.track(response)
    scheduler.track(response)
    assert len(FakeTimer.created) == 1
    assert FakeTimer.created[0].started
    assert FakeTimer.created[0].daemon


def test_cancel_stops_following() -> None:
    runs: list[str] = []
    scheduler = make_scheduler(runs, Clock())
    scheduler.track(assistant_msg("b1", "c1", 1_000))
    timer = FakeTimer.created[-1]

    scheduler.cancel()
    timer.fire()
    assert timer.cancelled
    assert runs == []
    assert scheduler.active_response_id is None


def test_failing_rescan_keeps_following() -> None:
    clock = Clock()
    calls: list[AIResponse] = []

    def boom(response: AIResponse) -> None:
        calls.append(response)
        raise RuntimeError("git exploded")

    FakeTimer.created = []
    scheduler = FollowUpScheduler(boom, interval_s=30.0, duration_s=100.0, clock=clock, timer_factory=FakeTimer)
    scheduler.track(assistant_msg("b1", "c1", 1_000))
    clock.now = 30.0
    FakeTimer.created[-1].fire()

    assert len(calls) == 1
    assert scheduler.pending
