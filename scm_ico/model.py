"""Domain models shared by the scm-ico workflows.

Everything here is a value type owned by the workflow invocation that
produced it. Nothing is persisted between invocations; each run re-derives
its view of the sale from the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from .units import AmountValue


class PhaseKind(Enum):
    ONGOING = "Ongoing"
    CLOSED = "Closed"
    FINISHED = "Finished"
    UNKNOWN = "Unknown"


_PHASE_CODES = {0: PhaseKind.ONGOING, 1: PhaseKind.CLOSED, 2: PhaseKind.FINISHED}


@dataclass(frozen=True)
class SalePhase:
    """Lifecycle stage of the sale as reported by the contract's ``state()``.

    Codes the client does not know are kept as :attr:`PhaseKind.UNKNOWN`
    with the raw code so that a newer contract never breaks an older client.
    """

    kind: PhaseKind
    code: int

    @classmethod
    def from_code(cls, code: int) -> "SalePhase":
        return cls(_PHASE_CODES.get(int(code), PhaseKind.UNKNOWN), int(code))

    @property
    def is_ongoing(self) -> bool:
        return self.kind is PhaseKind.ONGOING

    def __str__(self) -> str:
        if self.kind is PhaseKind.UNKNOWN:
            return f"Unknown ({self.code})"
        return self.kind.value


ONGOING = SalePhase.from_code(0)
CLOSED = SalePhase.from_code(1)
FINISHED = SalePhase.from_code(2)


class FundingPolicy(Enum):
    STRICT = "strict"
    BEST_EFFORT = "best-effort"


@dataclass
class LedgerState:
    """Sale overview read from a single block."""

    block_number: int
    phase: SalePhase
    left_eth: AmountValue
    left_scm: AmountValue
    ico_address: str
    scm_address: str
    weth_address: str
    close_time: int | None = None
    finish_time: int | None = None

    def as_lines(self) -> List[str]:
        lines = [
            f"State: {self.phase}",
            f"Left ETH: {self.left_eth}",
            f"Left SCM: {self.left_scm}",
            f"ICO: {self.ico_address}",
            f"SCM: {self.scm_address}",
            f"WETH: {self.weth_address}",
        ]
        if self.close_time is not None:
            lines.append(f"Close time: {format_timestamp(self.close_time)}")
        if self.finish_time is not None:
            lines.append(f"Finish time: {format_timestamp(self.finish_time)}")
        return lines

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "block_number": self.block_number,
            "state": str(self.phase),
            "state_code": self.phase.code,
            "left_eth": str(self.left_eth),
            "left_scm": str(self.left_scm),
            "ico": self.ico_address,
            "scm": self.scm_address,
            "weth": self.weth_address,
            "close_time": self.close_time,
            "finish_time": self.finish_time,
        }


@dataclass
class WorkflowReport:
    """What a workflow did and what the ledger looked like afterwards."""

    steps: List[str] = field(default_factory=list)
    balances: Dict[str, AmountValue] = field(default_factory=dict)
    phase: SalePhase | None = None
    tx_hash: str | None = None
    block_number: int | None = None

    def record(self, step: str) -> None:
        self.steps.append(step)

    def as_lines(self) -> List[str]:
        lines = [f"  - {step}" for step in self.steps]
        for label, amount in self.balances.items():
            lines.append(f"{label}: {amount}")
        if self.phase is not None:
            lines.append(f"State: {self.phase}")
        return lines


def format_timestamp(timestamp: int) -> str:
    """Render a UNIX timestamp in the operator's local timezone."""

    return datetime.fromtimestamp(timestamp, tz=timezone.utc).astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
