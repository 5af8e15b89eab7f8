"""Event subscriptions built on log filters.

Plain HTTP endpoints cannot push notifications, so a subscription polls
``eth_getLogs`` over the block range it has not covered yet, sleeping
between polls. From the caller's side it is an ordinary lazy, unbounded
iterator of decoded events; it only ends when the node returns an error.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, List, Set, Tuple

from .contracts import ContractEvent, EventLog
from .rpc_client import EthereumRPCClient, block_tag

logger = logging.getLogger(__name__)


class EventSubscription:
    """Stream ``event`` logs emitted by ``address`` from ``from_block`` on."""

    def __init__(
        self,
        rpc: EthereumRPCClient,
        address: str,
        event: ContractEvent,
        from_block: int,
        poll_interval_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if from_block < 0:
            raise ValueError("from_block must be non-negative")

        self.rpc = rpc
        self.address = address
        self.event = event
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._next_block = from_block
        self._seen: Set[Tuple[str | None, int | None]] = set()

    @property
    def next_block(self) -> int:
        return self._next_block

    def poll_once(self) -> List[EventLog]:
        """Fetch logs between the last covered block and the chain head."""

        head = self.rpc.block_number()
        if head < self._next_block:
            return []
        raw_logs = self.rpc.get_logs(
            {
                "address": self.address,
                "topics": [self.event.topic],
                "fromBlock": block_tag(self._next_block),
                "toBlock": block_tag(head),
            }
        )
        self._next_block = head + 1
        return self._filter_new_events(raw_logs)

    def __iter__(self) -> Iterator[EventLog]:
        logger.debug(
            "Subscribed to %s on %s from block %d", self.event.name, self.address, self._next_block
        )
        while True:
            events = self.poll_once()
            for event in events:
                yield event
            if not events:
                self._sleep(self.poll_interval_seconds)

    def _filter_new_events(self, raw_logs: list[dict]) -> List[EventLog]:
        """Decode logs, dropping any delivered by an earlier poll."""

        new_events: List[EventLog] = []
        for raw in raw_logs:
            if raw.get("removed"):
                continue
            event = self.event.decode_log(raw)
            key = (event.tx_hash, event.log_index)
            if key in self._seen:
                continue
            self._seen.add(key)
            new_events.append(event)
        return new_events
