"""Ledger gateway: the remote operations the workflow engine depends on.

The gateway narrows the JSON-RPC surface down to four operations: read a
contract at a block height (alone or batched), submit a signed transaction
and block until it is mined, and subscribe to contract events. Everything
above this module works in terms of :class:`~scm_ico.contracts.ContractCall`
objects and never sees raw calldata or hex quantities.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Sequence

from .contracts import ContractCall, ContractEvent, EventLog
from .rpc_client import EthereumRPCClient, RPCError, parse_quantity
from .signer import Signer
from .subscriptions import EventSubscription
from .units import AmountValue

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20


class TransactionReverted(RuntimeError):
    """Raised when a submitted transaction is rejected or mined with status 0."""

    def __init__(
        self,
        description: str,
        reason: str | None = None,
        receipt: "TransactionReceipt | None" = None,
    ) -> None:
        detail = f": {reason}" if reason else ""
        where = f" in block {receipt.block_number}" if receipt is not None else ""
        super().__init__(f"{description} reverted{where}{detail}")
        self.description = description
        self.reason = reason
        self.receipt = receipt


class ReceiptTimeout(RuntimeError):
    """Raised when a transaction is not mined within the configured timeout."""

    def __init__(self, tx_hash: str, waited: float) -> None:
        super().__init__(
            f"transaction {tx_hash} was not mined within {waited:.0f} seconds; "
            "it may still be pending, check it before retrying"
        )
        self.tx_hash = tx_hash


@dataclass
class TransactionReceipt:
    tx_hash: str
    block_number: int
    status: int
    gas_used: int | None = None
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "TransactionReceipt":
        status = raw.get("status")
        return cls(
            tx_hash=raw["transactionHash"],
            block_number=parse_quantity(raw["blockNumber"]),
            status=parse_quantity(status) if status is not None else 1,
            gas_used=parse_quantity(raw["gasUsed"]) if raw.get("gasUsed") is not None else None,
            logs=list(raw.get("logs") or []),
        )

    def events(self, event: ContractEvent, address: str | None = None) -> List[EventLog]:
        """Decode every ``event`` log in this receipt, optionally by emitter."""

        decoded: List[EventLog] = []
        for log in self.logs:
            topics = log.get("topics") or []
            if not topics or str(topics[0]).lower() != event.topic.lower():
                continue
            if address is not None and str(log.get("address", "")).lower() != address.lower():
                continue
            decoded.append(event.decode_log(log))
        return decoded


class LedgerGateway:
    """JSON-RPC backed implementation of the remote ledger operations."""

    def __init__(
        self,
        rpc: EthereumRPCClient,
        *,
        poll_interval: float = 2.0,
        receipt_timeout: float = 300.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc = rpc
        self.poll_interval = poll_interval
        self.receipt_timeout = receipt_timeout
        self._sleep = sleep

    def network_id(self) -> str:
        return self.rpc.net_version()

    def block_number(self) -> int:
        return self.rpc.block_number()

    def has_state(self, height: int) -> bool:
        """Return whether the node can evaluate calls at ``height``.

        Pruned nodes keep every header, so a state lookup is needed as well.
        State errors propagate as :class:`RPCError`.
        """

        if self.rpc.get_block_by_number(height) is None:
            return False
        self.rpc.get_balance(ZERO_ADDRESS, height)
        return True

    # Reads -------------------------------------------------------------

    def submit_read(self, call: ContractCall, at_height: int | None = None) -> Any:
        """Execute one read-only call at ``at_height`` (latest when ``None``)."""

        block = "latest" if at_height is None else at_height
        raw = self.rpc.eth_call({"to": call.address, "data": call.calldata()}, block)
        return call.decode(raw)

    def submit_read_batch(self, calls: Sequence[ContractCall], at_height: int) -> List[Any]:
        """Execute ``calls`` in one round trip, all at ``at_height``.

        Returns one entry per call: the decoded value, or the exception that
        call failed with. Transport failures are raised for the whole batch.
        """

        requests_ = [
            ("eth_call", [{"to": call.address, "data": call.calldata()}, hex(at_height)])
            for call in calls
        ]
        results: List[Any] = []
        for call, raw in zip(calls, self.rpc.call_batch(requests_)):
            if isinstance(raw, Exception):
                results.append(raw)
                continue
            try:
                results.append(call.decode(raw))
            except ValueError as exc:
                results.append(exc)
        return results

    # Writes ------------------------------------------------------------

    def submit_transaction(
        self, call: ContractCall, signer: Signer, value: AmountValue | None = None
    ) -> TransactionReceipt:
        """Sign and submit ``call``, then block until it is mined."""

        wei = value.as_base_units() if value is not None else None
        tx = call.as_transaction(value=wei)
        logger.info("Submitting %s from %s", call.describe(), signer.address)
        try:
            tx_hash = signer.send(self.rpc, tx)
        except RPCError as exc:
            if exc.is_revert:
                raise TransactionReverted(call.describe(), exc.revert_reason) from exc
            raise
        logger.info("Submitted %s as %s; waiting for it to be mined", call.function.name, tx_hash)
        receipt = self.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise TransactionReverted(call.describe(), receipt=receipt)
        logger.info("%s mined in block %d", tx_hash, receipt.block_number)
        return receipt

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        waited = 0.0
        while True:
            raw = self.rpc.get_transaction_receipt(tx_hash)
            if raw is not None and raw.get("blockNumber") is not None:
                return TransactionReceipt.from_rpc(raw)
            if waited >= self.receipt_timeout:
                raise ReceiptTimeout(tx_hash, waited)
            logger.debug("Waiting for %s to be mined (%.0fs so far)", tx_hash, waited)
            self._sleep(self.poll_interval)
            waited += self.poll_interval

    # Events ------------------------------------------------------------

    def subscribe_events(
        self, address: str, event: ContractEvent, from_block: int
    ) -> Iterator[EventLog]:
        return iter(
            EventSubscription(
                self.rpc,
                address,
                event,
                from_block,
                poll_interval_seconds=self.poll_interval,
                sleep=self._sleep,
            )
        )
