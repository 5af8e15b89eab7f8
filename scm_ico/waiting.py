"""Blocking waits on sale progress: an on-chain event or a wall-clock deadline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .contracts import ICO_CLOSED_EVENT, ContractEvent, EventLog, IcoContract
from .model import SalePhase, format_timestamp

logger = logging.getLogger(__name__)


class SystemClock:
    """Wall clock used outside of tests."""

    def now(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class WaitState(Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    SLEEPING = "sleeping"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class AwaitEvent:
    contract: str
    event: ContractEvent
    from_block: int


@dataclass(frozen=True)
class AwaitDeadline:
    instant: float


WaitCondition = Union[AwaitEvent, AwaitDeadline]


class WaitEngine:
    """Suspend the workflow until one :data:`WaitCondition` is satisfied.

    An event wait has no timeout: a sale can stay open for as long as its
    owner likes, so the engine keeps polling the event feed until the first
    matching log shows up. A deadline wait computes the remaining time once
    and sleeps exactly that long.
    """

    def __init__(self, gateway: Any, clock: Any | None = None) -> None:
        self.gateway = gateway
        self.clock = clock if clock is not None else SystemClock()
        self.state = WaitState.IDLE

    def await_event(self, contract: str, event: ContractEvent, from_block: int) -> EventLog:
        self.state = WaitState.SUBSCRIBED
        logger.info("Waiting for %s from %s starting at block %d", event.name, contract, from_block)
        feed = self.gateway.subscribe_events(contract, event, from_block)
        try:
            received = next(feed)
        except StopIteration:
            self.state = WaitState.IDLE
            raise RuntimeError(f"event feed for {event.name} ended before any event arrived") from None
        self.state = WaitState.RESOLVED
        logger.info("Received %s in block %s", received.event, received.block_number)
        return received

    def await_deadline(self, instant: float) -> float:
        """Sleep until ``instant`` and return the number of seconds slept."""

        remaining = instant - self.clock.now()
        if remaining <= 0:
            self.state = WaitState.RESOLVED
            return 0.0
        self.state = WaitState.SLEEPING
        logger.info("Sleeping %.0f seconds until %s", remaining, format_timestamp(int(instant)))
        self.clock.sleep(remaining)
        self.state = WaitState.RESOLVED
        return remaining

    def wait(self, condition: WaitCondition) -> EventLog | float:
        if isinstance(condition, AwaitEvent):
            return self.await_event(condition.contract, condition.event, condition.from_block)
        if isinstance(condition, AwaitDeadline):
            return self.await_deadline(condition.instant)
        raise TypeError(f"Unsupported wait condition: {condition!r}")

    def wait_for_finish(self, ico: IcoContract) -> int:
        """Block until the sale has closed and its hold period has elapsed.

        Returns the sale's finish timestamp.
        """

        height = self.gateway.block_number()
        phase = SalePhase.from_code(self.gateway.submit_read(ico.state(), at_height=height))
        if phase.is_ongoing:
            self.await_event(ico.address, ICO_CLOSED_EVENT, height)
        else:
            logger.info("Sale is already %s", phase)

        finish_time = self.gateway.submit_read(ico.finish_time())
        self.await_deadline(finish_time)
        return finish_time
