from __future__ import annotations

import pytest

from scm_ico.contracts import ICO_CLOSED_EVENT, EventLog, IcoContract
from scm_ico.waiting import AwaitDeadline, AwaitEvent, WaitEngine, WaitState

ICO_ADDRESS = "0x1111111111111111111111111111111111111111"


class FakeClock:
    def __init__(self, now: float) -> None:
        self._now = now
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += seconds


class FakeSaleFeed:
    def __init__(self, phase_code: int = 0, finish_time: int = 0, head: int = 77) -> None:
        self.phase_code = phase_code
        self.finish_time = finish_time
        self.head = head
        self.subscriptions: list[tuple[str, str, int]] = []
        self.reads: list[tuple[str, int | None]] = []

    def block_number(self) -> int:
        return self.head

    def submit_read(self, call, at_height=None):
        self.reads.append((call.function.name, at_height))
        if call.function.name == "state":
            return self.phase_code
        if call.function.name == "finishTime":
            return self.finish_time
        raise AssertionError(call.describe())

    def subscribe_events(self, address, event, from_block):
        self.subscriptions.append((address, event.name, from_block))
        yield EventLog(event=event.name, args={}, address=address, block_number=from_block + 3)
        raise AssertionError("only one event should be consumed")


def test_deadline_in_the_past_does_not_sleep() -> None:
    clock = FakeClock(now=1_000)
    engine = WaitEngine(FakeSaleFeed(), clock)

    assert engine.await_deadline(900) == 0
    assert clock.sleeps == []
    assert engine.state is WaitState.RESOLVED


def test_deadline_in_the_future_sleeps_once_for_the_remainder() -> None:
    clock = FakeClock(now=1_000)
    engine = WaitEngine(FakeSaleFeed(), clock)

    assert engine.await_deadline(1_250) == 250
    assert clock.sleeps == [250]
    assert engine.state is WaitState.RESOLVED


def test_await_event_returns_first_event() -> None:
    feed = FakeSaleFeed()
    engine = WaitEngine(feed, FakeClock(now=0))
    assert engine.state is WaitState.IDLE

    event = engine.await_event(ICO_ADDRESS, ICO_CLOSED_EVENT, 10)

    assert event.event == "IcoClosed"
    assert event.block_number == 13
    assert feed.subscriptions == [(ICO_ADDRESS, "IcoClosed", 10)]
    assert engine.state is WaitState.RESOLVED


def test_wait_dispatches_on_condition_type() -> None:
    clock = FakeClock(now=50)
    engine = WaitEngine(FakeSaleFeed(), clock)

    assert engine.wait(AwaitDeadline(80)) == 30
    assert engine.wait(AwaitEvent(ICO_ADDRESS, ICO_CLOSED_EVENT, 5)).event == "IcoClosed"
    with pytest.raises(TypeError):
        engine.wait("soon")  # type: ignore[arg-type]


def test_wait_for_finish_waits_for_close_then_hold_period() -> None:
    feed = FakeSaleFeed(phase_code=0, finish_time=2_000, head=77)
    clock = FakeClock(now=1_500)
    engine = WaitEngine(feed, clock)

    assert engine.wait_for_finish(IcoContract(ICO_ADDRESS)) == 2_000

    assert feed.reads[0] == ("state", 77)
    assert feed.subscriptions == [(ICO_ADDRESS, "IcoClosed", 77)]
    assert clock.sleeps == [500]


def test_wait_for_finish_skips_event_when_already_closed() -> None:
    feed = FakeSaleFeed(phase_code=1, finish_time=1_200)
    clock = FakeClock(now=1_000)

    WaitEngine(feed, clock).wait_for_finish(IcoContract(ICO_ADDRESS))

    assert feed.subscriptions == []
    assert clock.sleeps == [200]


def test_wait_for_finish_returns_immediately_when_finished() -> None:
    feed = FakeSaleFeed(phase_code=2, finish_time=10)
    clock = FakeClock(now=1_000)

    WaitEngine(feed, clock).wait_for_finish(IcoContract(ICO_ADDRESS))

    assert feed.subscriptions == []
    assert clock.sleeps == []
