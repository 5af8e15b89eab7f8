"""Submission of the funding transaction itself."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .contracts import FUND_EVENT, IcoContract
from .gateway import TransactionReceipt, TransactionReverted
from .model import FundingPolicy, SalePhase
from .signer import Signer
from .units import ETH, SCM, AmountValue

logger = logging.getLogger(__name__)

SALE_CLOSED_REASON = "ico is closed"


class FundingError(RuntimeError):
    """Base class for expected business outcomes of a funding attempt."""


class FundingReverted(FundingError):
    """The sale rejected the funding transaction."""

    def __init__(self, message: str, reason: str | None = None, receipt: TransactionReceipt | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.receipt = receipt


class SaleClosed(FundingReverted):
    """The sale no longer accepts any funds."""


@dataclass
class FundingReceipt:
    receipt: TransactionReceipt
    policy: FundingPolicy
    requested: AmountValue
    funded: AmountValue
    tokens: AmountValue | None = None

    @property
    def tx_hash(self) -> str:
        return self.receipt.tx_hash

    @property
    def partial(self) -> bool:
        return self.funded < self.requested


class FundingExecutor:
    """Submit exactly one funding transaction under a :class:`FundingPolicy`.

    ``STRICT`` calls ``fund(amount)``, which reverts unless the sale can
    take the whole amount. ``BEST_EFFORT`` calls ``fundAny(amount)``, which
    takes whatever the sale can still allocate up to ``amount`` and only
    fails once the sale is closed. The amount actually accepted is read back
    from the ``Fund`` event in the receipt.
    """

    def __init__(self, gateway: Any, ico: IcoContract) -> None:
        self.gateway = gateway
        self.ico = ico

    def fund(self, signer: Signer, amount: AmountValue, policy: FundingPolicy) -> FundingReceipt:
        if policy is FundingPolicy.STRICT:
            call = self.ico.fund(amount)
        else:
            call = self.ico.fund_any(amount)

        logger.info("Funding %s with %s (%s)", self.ico.address, amount, policy.value)
        try:
            receipt = self.gateway.submit_transaction(call, signer)
        except TransactionReverted as exc:
            if self._sale_closed(exc):
                raise SaleClosed(
                    f"the sale is closed; {call.describe()} was rejected",
                    reason=exc.reason,
                    receipt=exc.receipt,
                ) from exc
            raise FundingReverted(str(exc), reason=exc.reason, receipt=exc.receipt) from exc

        funded = amount
        tokens = None
        events = receipt.events(FUND_EVENT, self.ico.address)
        if events:
            funded = AmountValue.from_base_units(events[0].args["eth"], ETH)
            tokens = AmountValue.from_base_units(events[0].args["scm"], SCM)
        else:
            logger.debug("No Fund event in %s; assuming the full amount was taken", receipt.tx_hash)
        if funded < amount:
            logger.info("Sale accepted %s of the requested %s", funded, amount)

        return FundingReceipt(
            receipt=receipt,
            policy=policy,
            requested=amount,
            funded=funded,
            tokens=tokens,
        )

    def _sale_closed(self, exc: TransactionReverted) -> bool:
        if exc.reason:
            return SALE_CLOSED_REASON in exc.reason.lower()
        if exc.receipt is None:
            return False
        try:
            code = self.gateway.submit_read(self.ico.state(), at_height=exc.receipt.block_number)
        except (RuntimeError, ValueError) as read_exc:
            logger.debug("Could not read the sale phase after a revert: %s", read_exc)
            return False
        return not SalePhase.from_code(code).is_ongoing
