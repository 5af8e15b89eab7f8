"""Typed JSON-RPC client for Ethereum-compatible nodes.

The client backs every remote interaction in scm-ico: contract reads
(``eth_call``), transaction submission, receipt lookups and log filters.
Batched requests are sent as a single JSON-RPC array so that a whole
snapshot chunk costs one HTTP round trip. No contract logic lives here; the
client simply forwards requests and surfaces errors clearly.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from typing import Any, Dict, Optional, Sequence, Tuple

import requests
from requests import RequestException, Response

from .config import RPCConfig

logger = logging.getLogger(__name__)

MISSING_STATE_MARKERS = ("missing trie node", "header not found", "pruned")


class RPCError(RuntimeError):
    """Raised when the node responds with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data

    @property
    def is_revert(self) -> bool:
        return self.code == 3 or "revert" in self.message.lower()

    @property
    def is_missing_state(self) -> bool:
        lowered = self.message.lower()
        return any(marker in lowered for marker in MISSING_STATE_MARKERS)

    @property
    def revert_reason(self) -> str | None:
        if not self.is_revert:
            return None
        lowered = self.message.lower()
        for marker in ("reverted with reason string ", "execution reverted: ", "revert "):
            index = lowered.find(marker)
            if index != -1:
                return self.message[index + len(marker):].strip().strip("'\"")
        return None


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for common Ethereum node errors.

    Only well-known failure modes produce a hint; callers should still show
    the raw error so operators can retry the failing step manually.
    """

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCError):
        code = error_obj.code
        message = error_obj.message
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = str(error_obj.get("message", ""))
    lowered = message.lower()

    if "ico is closed" in lowered:
        return "The sale no longer accepts funds. Run `scm-ico ico info` to see its phase."
    if "not enough weth" in lowered:
        return "Your WETH balance is too low. Re-run with --wrap-weth or wrap manually with `scm-ico weth deposit`."
    if "not allowed to spend weth" in lowered:
        return "The ICO may not spend your WETH yet. Re-run with --approve-weth or use `scm-ico weth approve`."
    if "not enough tokens left" in lowered:
        return "The sale has less capacity left than requested. Use --best-effort to take what remains."
    if "not finished yet" in lowered:
        return "The sale has not finished. Re-run with --wait to block until it does."
    if "no scm tokens to claim" in lowered:
        return "This account has nothing to claim; it may have claimed already."
    if any(marker in lowered for marker in MISSING_STATE_MARKERS):
        return "The node no longer serves state for that block. Use an archive node or a more recent block."
    if "authentication needed" in lowered or "account is locked" in lowered or "unknown account" in lowered:
        return (
            "The node refused to sign for ETH_ACCOUNT. Provide ETH_PASSWORD so the account can be unlocked, "
            "or set ETH_PRIVATE_KEY to sign locally."
        )
    if "insufficient funds" in lowered:
        return "The account cannot pay for value plus gas. Top it up or lower the amount."
    if "nonce too low" in lowered or "replacement transaction underpriced" in lowered:
        return "Another transaction from this account raced this one. Wait for it to be mined and retry."
    if code == -32601:
        return "The node does not support this RPC method; check that the endpoint points at an Ethereum node."
    return None


class EthereumRPCClient:
    """Typed JSON-RPC client for Ethereum-compatible nodes.

    Each helper maps directly to one RPC method and returns the decoded JSON
    result. ``call_batch`` sends several requests in one HTTP POST and returns
    results in request order; per-request errors come back as ``RPCError``
    instances instead of being raised, so one failing request does not hide
    its siblings.
    """

    def __init__(self, config: RPCConfig) -> None:
        self.config = config
        self._session = requests.Session()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    @property
    def _url(self) -> str:
        return self.config.base_url

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def _payload(self, method: str, params: Optional[Sequence[Any]]) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": list(params or []),
        }

    def call(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Perform a single JSON-RPC request."""

        payload = self._payload(method, params)
        logger.debug("RPC call %s params=%s", method, params)
        result = self._post(payload)
        if not isinstance(result, dict):
            raise RPCTransportError("RPC server returned a non-object response")
        if result.get("error"):
            raise _error_from(result["error"])
        return result.get("result")

    def call_batch(self, requests_: Sequence[Tuple[str, Sequence[Any]]]) -> list[Any]:
        """Send ``requests_`` as one JSON-RPC batch.

        Returns one entry per request, in order: the result, or an
        ``RPCError`` for requests the node rejected.
        """

        if not requests_:
            return []
        payloads = [self._payload(method, params) for method, params in requests_]
        logger.debug("RPC batch of %d requests", len(payloads))
        response = self._post(payloads)
        if isinstance(response, dict):
            # Some nodes answer a malformed batch with a single error object.
            if response.get("error"):
                raise _error_from(response["error"])
            raise RPCTransportError("RPC server answered a batch with a single object")
        if not isinstance(response, list):
            raise RPCTransportError("RPC server returned a non-array batch response")

        by_id = {entry.get("id"): entry for entry in response if isinstance(entry, dict)}
        results: list[Any] = []
        for payload in payloads:
            entry = by_id.get(payload["id"])
            if entry is None:
                results.append(RPCError(-32603, f"no response for batched {payload['method']}"))
            elif entry.get("error"):
                results.append(_error_from(entry["error"]))
            else:
                results.append(entry.get("result"))
        return results

    def _post(self, payload: Any) -> Any:
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                f"RPC connection to {self._url} failed. Ensure the node is reachable and "
                "ETH_RPC_URL (or ~/.scm-ico.yaml) points to the right endpoint."
            ) from exc
        try:
            self._raise_for_status(response)
        except requests.HTTPError as exc:
            logger.error(
                "RPC HTTP error: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise RPCTransportError(
                "RPC server returned an HTTP error; check ETH_RPC_URL and any proxy in front of the node.",
                status_code=response.status_code,
            ) from exc
        try:
            return response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc

    def _raise_for_status(self, response: Response) -> None:
        if not response.ok:
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.error("RPC error body: %s", response.text)
            if response.status_code == 401:
                raise RPCTransportError(
                    "Unauthorized (401). The endpoint in ETH_RPC_URL requires credentials.",
                    status_code=response.status_code,
                )
        response.raise_for_status()

    # Convenience wrappers -------------------------------------------------

    def chain_id(self) -> int:
        return parse_quantity(self.call("eth_chainId"))

    def net_version(self) -> str:
        return str(self.call("net_version"))

    def block_number(self) -> int:
        return parse_quantity(self.call("eth_blockNumber"))

    def get_block_by_number(self, block: int | str, full_transactions: bool = False) -> Dict[str, Any] | None:
        return self.call("eth_getBlockByNumber", [block_tag(block), full_transactions])

    def get_balance(self, address: str, block: int | str = "latest") -> int:
        return parse_quantity(self.call("eth_getBalance", [address, block_tag(block)]))

    def eth_call(self, transaction: Dict[str, Any], block: int | str = "latest") -> str:
        return self.call("eth_call", [transaction, block_tag(block)])

    def estimate_gas(self, transaction: Dict[str, Any]) -> int:
        return parse_quantity(self.call("eth_estimateGas", [transaction]))

    def gas_price(self) -> int:
        return parse_quantity(self.call("eth_gasPrice"))

    def get_transaction_count(self, address: str, block: int | str = "pending") -> int:
        return parse_quantity(self.call("eth_getTransactionCount", [address, block_tag(block)]))

    def send_transaction(self, transaction: Dict[str, Any]) -> str:
        return self.call("eth_sendTransaction", [transaction])

    def send_raw_transaction(self, raw_tx: str) -> str:
        return self.call("eth_sendRawTransaction", [raw_tx])

    def get_transaction_receipt(self, tx_hash: str) -> Dict[str, Any] | None:
        return self.call("eth_getTransactionReceipt", [tx_hash])

    def get_logs(self, log_filter: Dict[str, Any]) -> list[Dict[str, Any]]:
        return self.call("eth_getLogs", [log_filter]) or []

    def unlock_account(self, address: str, password: str, duration: int | None = None) -> bool:
        return bool(self.call("personal_unlockAccount", [address, password, duration]))


def block_tag(block: int | str) -> str:
    """Render a block number as the hex quantity the JSON-RPC API expects."""

    if isinstance(block, bool):
        raise TypeError("block must be an int or a tag string")
    if isinstance(block, int):
        return hex(block)
    return block


def parse_quantity(value: Any) -> int:
    """Decode a JSON-RPC quantity (``0x``-prefixed hex or decimal) to int."""

    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise RPCTransportError(f"Expected a numeric quantity from the node, got {value!r}")


def _error_from(error: Any) -> RPCError:
    if not isinstance(error, dict):
        return RPCError(-1, str(error))
    return RPCError(error.get("code", -1), error.get("message", "unknown"), error.get("data"))
