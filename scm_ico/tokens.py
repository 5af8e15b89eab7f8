"""Plain ERC-20 and WETH9 operations behind the ``weth`` and ``scm`` commands."""

from __future__ import annotations

import logging
from typing import Any

from .contracts import Erc20Contract, Weth9Contract
from .gateway import TransactionReceipt
from .signer import Signer
from .units import AmountValue, Currency

logger = logging.getLogger(__name__)


def token_balance(gateway: Any, token: Erc20Contract, owner: str, currency: Currency) -> AmountValue:
    return AmountValue.from_base_units(gateway.submit_read(token.balance_of(owner)), currency)


def token_allowance(
    gateway: Any, token: Erc20Contract, owner: str, spender: str, currency: Currency
) -> AmountValue:
    return AmountValue.from_base_units(gateway.submit_read(token.allowance(owner, spender)), currency)


def token_transfer(
    gateway: Any,
    signer: Signer,
    token: Erc20Contract,
    recipient: str,
    amount: AmountValue,
    owner: str | None = None,
) -> TransactionReceipt:
    """Move ``amount`` to ``recipient``.

    With ``owner`` set the transfer spends the signer's allowance on
    ``owner``'s tokens through ``transferFrom``.
    """

    if owner is not None:
        call = token.transfer_from(owner, recipient, amount)
    else:
        call = token.transfer(recipient, amount)
    return gateway.submit_transaction(call, signer)


def token_approve(
    gateway: Any, signer: Signer, token: Erc20Contract, spender: str, amount: AmountValue
) -> TransactionReceipt:
    """Set ``spender``'s allowance to ``amount``, replacing any previous value."""

    return gateway.submit_transaction(token.approve(spender, amount), signer)


def weth_deposit(gateway: Any, signer: Signer, weth: Weth9Contract, amount: AmountValue) -> TransactionReceipt:
    logger.info("Wrapping %s", amount)
    return gateway.submit_transaction(weth.deposit(), signer, value=amount)


def weth_withdraw(gateway: Any, signer: Signer, weth: Weth9Contract, amount: AmountValue) -> TransactionReceipt:
    logger.info("Unwrapping %s", amount)
    return gateway.submit_transaction(weth.withdraw(amount), signer)
