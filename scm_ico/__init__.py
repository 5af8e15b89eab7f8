"""Client for the SCM token sale contracts."""

from .units import ETH, SCM, AmountValue, Currency, ParseError
from .model import FundingPolicy, LedgerState, SalePhase, WorkflowReport
from .snapshot import HeightUnavailable, RemoteCallFailed, StateSnapshot
from .conditioning import ConditioningError, ConditioningOptions, ConditioningSequence
from .funding import FundingError, FundingExecutor, FundingReverted, SaleClosed
from .waiting import AwaitDeadline, AwaitEvent, WaitEngine, WaitState
from .workflows import (
    WorkflowContext,
    run_balance_query,
    run_claim_workflow,
    run_funding_workflow,
    run_info_query,
    run_wait_workflow,
)

__all__ = [
    "ETH",
    "SCM",
    "AmountValue",
    "Currency",
    "ParseError",
    "FundingPolicy",
    "LedgerState",
    "SalePhase",
    "WorkflowReport",
    "HeightUnavailable",
    "RemoteCallFailed",
    "StateSnapshot",
    "ConditioningError",
    "ConditioningOptions",
    "ConditioningSequence",
    "FundingError",
    "FundingExecutor",
    "FundingReverted",
    "SaleClosed",
    "AwaitDeadline",
    "AwaitEvent",
    "WaitEngine",
    "WaitState",
    "WorkflowContext",
    "run_balance_query",
    "run_claim_workflow",
    "run_funding_workflow",
    "run_info_query",
    "run_wait_workflow",
]
