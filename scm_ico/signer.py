"""Transaction signers.

A signer is the only component that knows how a transaction gets
authorized. Workflows receive one explicitly and never look up keys or
passwords themselves.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from eth_account import Account
from eth_utils import to_checksum_address

from .config import AccountConfig, ConfigurationError
from .gas import format_floors_for_log, pad_gas_limit, select_gas_price
from .rpc_client import EthereumRPCClient

logger = logging.getLogger(__name__)


class Signer:
    """Interface: an account address plus a way to submit transactions from it."""

    address: str

    def send(self, rpc: EthereumRPCClient, transaction: Dict[str, Any]) -> str:
        """Submit ``transaction`` from :attr:`address` and return its hash."""

        raise NotImplementedError


class NodeSigner(Signer):
    """Sign through an account managed by the node (``eth_sendTransaction``).

    When a password is configured the account is unlocked with
    ``personal_unlockAccount`` before the first transaction.
    """

    def __init__(self, address: str, password: str | None = None) -> None:
        self.address = to_checksum_address(address)
        self._password = password
        self._unlocked = password is None

    def send(self, rpc: EthereumRPCClient, transaction: Dict[str, Any]) -> str:
        if not self._unlocked:
            logger.debug("Unlocking %s on the node", self.address)
            rpc.unlock_account(self.address, self._password or "")
            self._unlocked = True
        tx = dict(transaction)
        tx["from"] = self.address
        return rpc.send_transaction(tx)


class LocalKeySigner(Signer):
    """Sign locally with a private key and broadcast the raw transaction."""

    def __init__(
        self,
        private_key: str,
        *,
        gas_price_wei: int | None = None,
        max_gas_price_wei: int | None = None,
    ) -> None:
        self._account = Account.from_key(private_key)
        self.address = self._account.address
        self._gas_price_wei = gas_price_wei
        self._max_gas_price_wei = max_gas_price_wei
        self._chain_id: int | None = None

    def send(self, rpc: EthereumRPCClient, transaction: Dict[str, Any]) -> str:
        if self._chain_id is None:
            self._chain_id = rpc.chain_id()
        call = {"from": self.address, **transaction}
        gas = pad_gas_limit(rpc.estimate_gas(call))
        selection = select_gas_price(
            rpc,
            user_gas_price_wei=self._gas_price_wei,
            max_gas_price_wei=self._max_gas_price_wei,
        )
        logger.debug(
            "Gas price %d wei from %s (floors: %s)",
            selection.gas_price_wei,
            selection.source,
            format_floors_for_log(selection.floors_applied),
        )
        value = transaction.get("value", 0)
        tx = {
            "to": to_checksum_address(transaction["to"]),
            "data": transaction.get("data", "0x"),
            "value": int(value, 16) if isinstance(value, str) else int(value),
            "nonce": rpc.get_transaction_count(self.address, "pending"),
            "gas": gas,
            "gasPrice": selection.gas_price_wei,
            "chainId": self._chain_id,
        }
        signed = self._account.sign_transaction(tx)
        return rpc.send_raw_transaction("0x" + signed.raw_transaction.hex().removeprefix("0x"))


def signer_from_config(account: AccountConfig) -> Signer:
    """Build the signer described by ``account``.

    A private key selects local signing; otherwise the node signs for
    ``account.address``.
    """

    if account.private_key:
        signer = LocalKeySigner(
            account.private_key,
            gas_price_wei=account.gas_price_wei,
            max_gas_price_wei=account.max_gas_price_wei,
        )
        if account.address and to_checksum_address(account.address) != signer.address:
            raise ConfigurationError(
                f"ETH_ACCOUNT {account.address} does not match the configured private key ({signer.address})"
            )
        return signer
    if not account.address:
        raise ConfigurationError(
            "environment variable ETH_ACCOUNT must be present (or set account.address in the config file)"
        )
    return NodeSigner(account.address, account.password)
