"""Consistent multi-read snapshots of remote contract state.

A batch pins one block height when it is opened. Reads are queued with
:meth:`StateSnapshot.enqueue`, which hands back a :class:`PendingRead`, and
nothing touches the network until :meth:`StateSnapshot.execute`. Execution
splits the queue into chunks of at most ``max_batch_size`` reads, sends
each chunk as one JSON-RPC batch and runs the chunks in parallel. Every
read in the batch is evaluated at the pinned height, so values resolved
from one batch always describe the same ledger state no matter when each
round trip completes.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from .contracts import ContractCall
from .rpc_client import RPCError, format_rpc_hint

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 100
DEFAULT_MAX_WORKERS = 4


class HeightUnavailable(RuntimeError):
    """Raised when the node cannot serve state at the requested height."""

    def __init__(self, height: int, detail: str | None = None) -> None:
        suffix = f": {detail}" if detail else ""
        super().__init__(f"block {height} is not available on this node{suffix}")
        self.height = height


class RemoteCallFailed(RuntimeError):
    """Raised when resolving a read whose remote call failed."""

    def __init__(self, description: str, height: int, cause: BaseException) -> None:
        super().__init__(f"{description} at block {height} failed: {cause}")
        self.description = description
        self.height = height
        self.cause = cause


class PendingRead:
    """A queued read that resolves once its batch has been executed."""

    def __init__(self, call: ContractCall, height: int) -> None:
        self.call = call
        self.height = height
        self._future: Future = Future()

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> Any:
        """Return the decoded value, or raise :class:`RemoteCallFailed`."""

        if not self._future.done():
            raise RuntimeError(f"{self.call.describe()} has not been executed yet")
        return self._future.result()

    def _resolve(self, value: Any) -> None:
        self._future.set_result(value)

    def _fail(self, cause: BaseException) -> None:
        self._future.set_exception(RemoteCallFailed(self.call.describe(), self.height, cause))


@dataclass
class BatchHandle:
    height: int
    reads: List[PendingRead] = field(default_factory=list)
    executed: bool = False


class StateSnapshot:
    """Issue batches of reads that all observe one block height."""

    def __init__(self, gateway: Any, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.gateway = gateway
        self.max_workers = max(1, max_workers)

    def open(self, at_height: int | None = None) -> BatchHandle:
        """Pin a batch to ``at_height``, or to the current head when ``None``."""

        if at_height is None:
            return BatchHandle(height=self.gateway.block_number())
        if at_height < 0:
            raise HeightUnavailable(at_height, "negative block number")
        try:
            available = self.gateway.has_state(at_height)
        except RPCError as exc:
            if not exc.is_missing_state:
                raise
            raise HeightUnavailable(at_height, format_rpc_hint(exc) or exc.message) from exc
        if not available:
            raise HeightUnavailable(at_height)
        return BatchHandle(height=at_height)

    def enqueue(self, handle: BatchHandle, call: ContractCall) -> PendingRead:
        if handle.executed:
            raise RuntimeError("cannot enqueue into a batch that has already been executed")
        pending = PendingRead(call, handle.height)
        handle.reads.append(pending)
        return pending

    def execute(self, handle: BatchHandle, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE) -> None:
        """Dispatch every queued read and resolve its :class:`PendingRead`."""

        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if handle.executed:
            raise RuntimeError("batch has already been executed")
        handle.executed = True

        chunks = list(_chunked(handle.reads, max_batch_size))
        logger.debug(
            "Executing %d reads at block %d in %d chunk(s)",
            len(handle.reads),
            handle.height,
            len(chunks),
        )
        if len(chunks) <= 1:
            for chunk in chunks:
                self._execute_chunk(chunk, handle.height)
            return
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(chunks))) as pool:
            for future in [pool.submit(self._execute_chunk, chunk, handle.height) for chunk in chunks]:
                future.result()

    def read_many(
        self,
        calls: Iterable[ContractCall],
        at_height: int | None = None,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    ) -> tuple[BatchHandle, List[PendingRead]]:
        """Open, enqueue ``calls`` and execute in one step."""

        handle = self.open(at_height)
        reads = [self.enqueue(handle, call) for call in calls]
        self.execute(handle, max_batch_size)
        return handle, reads

    def _execute_chunk(self, chunk: Sequence[PendingRead], height: int) -> None:
        try:
            results = self.gateway.submit_read_batch([read.call for read in chunk], height)
        except Exception as exc:  # every read in the chunk carries the failure
            logger.warning("Batch of %d reads at block %d failed: %s", len(chunk), height, exc)
            for read in chunk:
                read._fail(exc)
            return

        if len(results) != len(chunk):
            mismatch = RuntimeError(f"expected {len(chunk)} results, node returned {len(results)}")
            for read in chunk:
                read._fail(mismatch)
            return

        for read, value in zip(chunk, results):
            if isinstance(value, Exception):
                read._fail(value)
            else:
                read._resolve(value)


def _chunked(items: Sequence[PendingRead], size: int) -> Iterable[Sequence[PendingRead]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]
