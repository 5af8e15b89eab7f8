"""Preparatory sub-transactions that must land before funding.

Funding the sale moves WETH from the buyer to the ICO, which needs two
things on-chain: a large enough WETH balance and a large enough allowance
for the ICO contract. :class:`ConditioningSequence` checks both and submits
only the transactions that are missing, strictly one after another: the
wrap must be mined before the allowance is checked, and the approval must
be mined before control returns to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List

from .contracts import ContractCall, Weth9Contract
from .signer import Signer
from .units import ETH, AmountValue, max_amount

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_CEILING = AmountValue.parse("10eth", ETH)


class WrapPolicy(Enum):
    FULL = "full"
    SHORTFALL = "shortfall"


class ApprovalPolicy(Enum):
    CEILING = "ceiling"
    EXACT = "exact"


class ConditioningError(RuntimeError):
    """Raised when a preparatory step fails; later steps are not attempted."""

    def __init__(self, step_name: str, cause: Any) -> None:
        super().__init__(f"{step_name} step failed: {cause}")
        self.step_name = step_name
        self.cause = cause


@dataclass(frozen=True)
class ConditioningOptions:
    allow_wrap: bool = False
    allow_approve: bool = False


class ConditioningSequence:
    """Wrap native currency and approve the spender only when needed.

    ``wrap_policy`` decides how much gets wrapped when the balance is short:
    the full target amount (``FULL``) or only the missing part
    (``SHORTFALL``). ``approval_policy`` decides the approved amount: the
    target amount (``EXACT``) or ``approval_ceiling`` raised to the target
    when the target is larger (``CEILING``).
    """

    def __init__(
        self,
        gateway: Any,
        weth: Weth9Contract,
        *,
        wrap_policy: WrapPolicy = WrapPolicy.FULL,
        approval_policy: ApprovalPolicy = ApprovalPolicy.CEILING,
        approval_ceiling: AmountValue = DEFAULT_APPROVAL_CEILING,
    ) -> None:
        self.gateway = gateway
        self.weth = weth
        self.wrap_policy = wrap_policy
        self.approval_policy = approval_policy
        self.approval_ceiling = approval_ceiling

    def prepare(
        self,
        signer: Signer,
        target_contract: str,
        amount: AmountValue,
        options: ConditioningOptions,
    ) -> List[str]:
        """Run the permitted steps and return a record of each one."""

        steps: List[str] = []
        wrapped = False
        if options.allow_wrap:
            wrapped = self._run_step("wrap", self._wrap, signer, amount, steps)
        if options.allow_approve or wrapped:
            self._run_step("approve", self._approve, signer, target_contract, amount, steps)
        return steps

    def wrap_amount(self, balance: AmountValue, amount: AmountValue) -> AmountValue:
        if self.wrap_policy is WrapPolicy.SHORTFALL:
            return amount - balance
        return amount

    def approval_amount(self, amount: AmountValue) -> AmountValue:
        if self.approval_policy is ApprovalPolicy.EXACT:
            return amount
        return max_amount(self.approval_ceiling.with_currency(amount.currency), amount)

    def _run_step(self, name: str, step, *args: Any) -> bool:
        try:
            return step(*args)
        except ConditioningError:
            raise
        except (RuntimeError, ValueError) as exc:
            logger.error("%s step failed: %s", name, exc)
            raise ConditioningError(name, exc) from exc

    def _wrap(self, signer: Signer, amount: AmountValue, steps: List[str]) -> bool:
        balance = self._read_amount(self.weth.balance_of(signer.address))
        if balance >= amount:
            logger.info("WETH balance %s is sufficient, no need to wrap more", balance)
            steps.append("wrap: skipped")
            return False

        deposit = self.wrap_amount(balance, amount)
        logger.info("Wrapping %s (balance %s, need %s)", deposit, balance, amount)
        receipt = self.gateway.submit_transaction(self.weth.deposit(), signer, value=deposit)
        steps.append(f"wrap: submitted tx {receipt.tx_hash}")

        after = self._read_amount(self.weth.balance_of(signer.address))
        if after < amount:
            raise ConditioningError("wrap", f"WETH balance is {after} after wrapping, need {amount}")
        return True

    def _approve(
        self, signer: Signer, target_contract: str, amount: AmountValue, steps: List[str]
    ) -> bool:
        allowance = self._read_amount(self.weth.allowance(signer.address, target_contract))
        if allowance >= amount:
            logger.info("WETH allowance %s is sufficient, no need to approve more", allowance)
            steps.append("approve: skipped")
            return False

        approved = self.approval_amount(amount)
        logger.info("Approving %s for %s", approved, target_contract)
        receipt = self.gateway.submit_transaction(self.weth.approve(target_contract, approved), signer)
        steps.append(f"approve: submitted tx {receipt.tx_hash}")

        after = self._read_amount(self.weth.allowance(signer.address, target_contract))
        if after < amount:
            raise ConditioningError("approve", f"allowance is {after} after approval, need {amount}")
        return True

    def _read_amount(self, call: ContractCall) -> AmountValue:
        return AmountValue.from_base_units(self.gateway.submit_read(call), ETH)
