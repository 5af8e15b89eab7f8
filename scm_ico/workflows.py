"""Workflow entry points used by the command line.

Each ``run_*`` function takes an explicit :class:`WorkflowContext` (and a
signer when it writes) and composes the engine pieces in a fixed order::

    wait (pre) -> conditioning -> fund / claim -> wait (post) -> readback

The readback always goes through :class:`~scm_ico.snapshot.StateSnapshot`
so the balances printed after a transaction all come from the block the
transaction was mined in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .conditioning import ApprovalPolicy, ConditioningOptions, ConditioningSequence, WrapPolicy
from .config import AppConfig, ContractOverrides, WorkflowConfig
from .contracts import ContractCall, IcoContract, ScmContract, Weth9Contract, resolve_contract_address
from .funding import FundingExecutor
from .gateway import LedgerGateway
from .model import FundingPolicy, LedgerState, SalePhase, WorkflowReport
from .rpc_client import EthereumRPCClient
from .signer import Signer
from .snapshot import StateSnapshot
from .units import ETH, SCM, AmountValue
from .waiting import WaitEngine

logger = logging.getLogger(__name__)


@dataclass
class WorkflowContext:
    """Everything a workflow needs to talk to the sale."""

    gateway: Any
    contracts: ContractOverrides = field(default_factory=ContractOverrides)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    clock: Any | None = None
    snapshot: StateSnapshot = field(init=False)
    wait_engine: WaitEngine = field(init=False)
    _network_id: str | None = field(default=None, init=False, repr=False)
    _resolved: Dict[str, str] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.snapshot = StateSnapshot(self.gateway)
        self.wait_engine = WaitEngine(self.gateway, self.clock)

    @classmethod
    def from_config(cls, config: AppConfig, *, clock: Any | None = None) -> "WorkflowContext":
        rpc = EthereumRPCClient(config.rpc)
        gateway = LedgerGateway(
            rpc,
            poll_interval=config.workflow.poll_interval,
            receipt_timeout=config.workflow.receipt_timeout,
        )
        return cls(gateway=gateway, contracts=config.contracts, workflow=config.workflow, clock=clock)

    def network_id(self) -> str:
        if self._network_id is None:
            self._network_id = str(self.gateway.network_id())
        return self._network_id

    def address_of(self, name: str) -> str:
        """Resolve ``name`` from the configured override or the known deployments."""

        if name not in self._resolved:
            override = self.contracts.get(name)
            network = None if override else self.network_id()
            self._resolved[name] = resolve_contract_address(name, override, network)
        return self._resolved[name]

    def ico(self) -> IcoContract:
        return IcoContract(self.address_of("ico"))

    def weth(self) -> Weth9Contract:
        return Weth9Contract(self.address_of("weth"))

    def scm(self) -> ScmContract:
        return ScmContract(self.address_of("scm"))

    def sale_weth(self, ico: IcoContract, at_height: int | None = None) -> Weth9Contract:
        """The WETH token the sale accepts; an explicit override still wins."""

        if self.contracts.weth:
            return self.weth()
        return Weth9Contract(self.gateway.submit_read(ico.weth(), at_height=at_height))

    def sale_scm(self, ico: IcoContract, at_height: int | None = None) -> ScmContract:
        if self.contracts.scm:
            return self.scm()
        return ScmContract(self.gateway.submit_read(ico.scm(), at_height=at_height))

    def conditioning(self, weth: Weth9Contract) -> ConditioningSequence:
        return ConditioningSequence(
            self.gateway,
            weth,
            wrap_policy=WrapPolicy(self.workflow.wrap_policy),
            approval_policy=ApprovalPolicy(self.workflow.approval_policy),
            approval_ceiling=self.workflow.approval_ceiling,
        )


def run_funding_workflow(
    ctx: WorkflowContext,
    signer: Signer,
    amount: AmountValue,
    policy: FundingPolicy = FundingPolicy.STRICT,
    wrap: bool = False,
    approve: bool = False,
) -> WorkflowReport:
    """Prepare WETH if allowed, fund the sale and read the result back."""

    report = WorkflowReport()
    ico = ctx.ico()
    if wrap or approve:
        weth = ctx.sale_weth(ico)
        for step in ctx.conditioning(weth).prepare(
            signer, ico.address, amount, ConditioningOptions(allow_wrap=wrap, allow_approve=approve)
        ):
            report.record(step)

    funding = FundingExecutor(ctx.gateway, ico).fund(signer, amount, policy)
    report.record(f"fund: submitted tx {funding.tx_hash}")
    if funding.partial:
        report.record(f"fund: sale accepted {funding.funded} of {funding.requested}")
    report.tx_hash = funding.tx_hash
    report.block_number = funding.receipt.block_number

    _readback(
        ctx,
        report,
        funding.receipt.block_number,
        ico,
        {
            "ICO balance": (ico.balance_scm(signer.address), SCM),
            "ICO balance (ETH)": (ico.balance_eth(signer.address), ETH),
        },
    )
    return report


def run_claim_workflow(ctx: WorkflowContext, signer: Signer, wait_for_finish: bool = False) -> WorkflowReport:
    """Claim purchased tokens, optionally waiting for the sale to finish first."""

    report = WorkflowReport()
    ico = ctx.ico()
    if wait_for_finish:
        ctx.wait_engine.wait_for_finish(ico)
        report.record("wait: sale finished")

    receipt = ctx.gateway.submit_transaction(ico.claim(), signer)
    report.record(f"claim: submitted tx {receipt.tx_hash}")
    report.tx_hash = receipt.tx_hash
    report.block_number = receipt.block_number

    scm = ctx.sale_scm(ico, at_height=receipt.block_number)
    _readback(
        ctx,
        report,
        receipt.block_number,
        ico,
        {"SCM balance": (scm.balance_of(signer.address), SCM)},
    )
    return report


def run_info_query(ctx: WorkflowContext) -> LedgerState:
    """Read the sale overview from one block."""

    ico = ctx.ico()
    calls = [
        ico.state(),
        ico.left_eth(),
        ico.left_scm(),
        ico.scm(),
        ico.weth(),
        ico.close_time(),
        ico.finish_time(),
    ]
    handle, reads = ctx.snapshot.read_many(calls, max_batch_size=ctx.workflow.max_batch_size)
    state, left_eth, left_scm, scm, weth, close_time, finish_time = (read.result() for read in reads)

    phase = SalePhase.from_code(state)
    # Timestamps are only meaningful once the sale has closed.
    closed = not phase.is_ongoing
    return LedgerState(
        block_number=handle.height,
        phase=phase,
        left_eth=AmountValue.from_base_units(left_eth, ETH),
        left_scm=AmountValue.from_base_units(left_scm, SCM),
        ico_address=ico.address,
        scm_address=scm,
        weth_address=weth,
        close_time=close_time if closed else None,
        finish_time=finish_time if closed else None,
    )


def run_wait_workflow(ctx: WorkflowContext) -> None:
    ctx.wait_engine.wait_for_finish(ctx.ico())


def run_balance_query(ctx: WorkflowContext, address: str, in_eth: bool = False) -> AmountValue:
    """Amount ``address`` has bought in the sale, in SCM or in contributed ETH."""

    ico = ctx.ico()
    if in_eth:
        return AmountValue.from_base_units(ctx.gateway.submit_read(ico.balance_eth(address)), ETH)
    return AmountValue.from_base_units(ctx.gateway.submit_read(ico.balance_scm(address)), SCM)


def _readback(
    ctx: WorkflowContext,
    report: WorkflowReport,
    height: int,
    ico: IcoContract,
    balances: Dict[str, tuple[ContractCall, Any]],
) -> None:
    labels: List[str] = list(balances)
    calls = [balances[label][0] for label in labels] + [ico.state()]
    _, reads = ctx.snapshot.read_many(calls, at_height=height, max_batch_size=ctx.workflow.max_batch_size)
    for label, read in zip(labels, reads):
        report.balances[label] = AmountValue.from_base_units(read.result(), balances[label][1])
    report.phase = SalePhase.from_code(reads[-1].result())
    logger.debug("Read back %d value(s) at block %d", len(reads), height)
