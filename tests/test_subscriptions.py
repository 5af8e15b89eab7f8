from __future__ import annotations

import itertools

import pytest
from eth_abi import encode

from scm_ico.contracts import ICO_CLOSED_EVENT
from scm_ico.subscriptions import EventSubscription

ICO_ADDRESS = "0x1111111111111111111111111111111111111111"


def closed_log(block: int, tx_hash: str = "0xaa", log_index: int = 0, removed: bool = False) -> dict:
    return {
        "address": ICO_ADDRESS,
        "topics": [ICO_CLOSED_EVENT.topic],
        "data": "0x" + encode(["uint256", "uint256"], [1_000, 2_000]).hex(),
        "blockNumber": hex(block),
        "transactionHash": tx_hash,
        "logIndex": hex(log_index),
        "removed": removed,
    }


class StubRPC:
    def __init__(self, heads, logs_by_poll) -> None:
        self._heads = iter(heads)
        self._logs = iter(logs_by_poll)
        self.filters: list[dict] = []

    def block_number(self) -> int:
        return next(self._heads)

    def get_logs(self, log_filter):
        self.filters.append(log_filter)
        return next(self._logs)


def test_poll_advances_block_range() -> None:
    rpc = StubRPC(heads=[12, 15], logs_by_poll=[[], []])
    subscription = EventSubscription(rpc, ICO_ADDRESS, ICO_CLOSED_EVENT, from_block=10)

    subscription.poll_once()
    subscription.poll_once()

    assert [(f["fromBlock"], f["toBlock"]) for f in rpc.filters] == [("0xa", "0xc"), ("0xd", "0xf")]
    assert rpc.filters[0]["topics"] == [ICO_CLOSED_EVENT.topic]
    assert subscription.next_block == 16


def test_poll_waits_when_head_is_behind() -> None:
    rpc = StubRPC(heads=[9], logs_by_poll=[])
    subscription = EventSubscription(rpc, ICO_ADDRESS, ICO_CLOSED_EVENT, from_block=10)

    assert subscription.poll_once() == []
    assert rpc.filters == []


def test_duplicate_and_removed_logs_are_dropped() -> None:
    rpc = StubRPC(
        heads=[20, 21],
        logs_by_poll=[
            [closed_log(20), closed_log(20, tx_hash="0xbb", removed=True)],
            [closed_log(20)],
        ],
    )
    subscription = EventSubscription(rpc, ICO_ADDRESS, ICO_CLOSED_EVENT, from_block=20)

    first = subscription.poll_once()
    second = subscription.poll_once()

    assert len(first) == 1
    assert first[0].args == {"closeTime": 1_000, "finishTime": 2_000}
    assert first[0].block_number == 20
    assert second == []


def test_iterator_sleeps_between_empty_polls() -> None:
    sleeps: list[float] = []
    rpc = StubRPC(heads=itertools.count(30), logs_by_poll=[[], [], [closed_log(32)]])
    subscription = EventSubscription(
        rpc, ICO_ADDRESS, ICO_CLOSED_EVENT, from_block=30, poll_interval_seconds=5, sleep=sleeps.append
    )

    event = next(iter(subscription))

    assert event.event == "IcoClosed"
    assert sleeps == [5, 5]


def test_negative_start_block_is_rejected() -> None:
    with pytest.raises(ValueError):
        EventSubscription(StubRPC([], []), ICO_ADDRESS, ICO_CLOSED_EVENT, from_block=-1)
