"""Contract bindings for the ICO, its SCM token and WETH9.

Bindings do not talk to the network. Each method returns a
:class:`ContractCall` describing one function invocation (target address,
ABI signature and arguments); the :mod:`scm_ico.gateway` layer turns calls
into ``eth_call`` reads or signed transactions. Encoding and decoding go
through ``eth-abi`` so the rest of the package never handles raw calldata.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import is_address, keccak, to_checksum_address

from .units import AmountValue

logger = logging.getLogger(__name__)


class AddressResolutionError(RuntimeError):
    """Raised when a contract address cannot be determined."""


@dataclass(frozen=True)
class ContractFunction:
    name: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    payable: bool = False

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    def encode_input(self, args: Sequence[Any]) -> str:
        if len(args) != len(self.inputs):
            raise ValueError(
                f"{self.signature} expects {len(self.inputs)} arguments, got {len(args)}"
            )
        encoded = abi_encode(list(self.inputs), [_abi_value(arg) for arg in args]) if self.inputs else b""
        return "0x" + (self.selector + encoded).hex()

    def decode_output(self, raw: str | bytes | None) -> Any:
        """Decode an ``eth_call`` result; single outputs are unwrapped."""

        if not self.outputs:
            return None
        data = _to_bytes(raw)
        if not data:
            raise ValueError(f"{self.signature} returned no data; is the contract deployed at this address?")
        values = abi_decode(list(self.outputs), data)
        values = tuple(_normalize_output(kind, value) for kind, value in zip(self.outputs, values))
        return values[0] if len(values) == 1 else values


@dataclass(frozen=True)
class ContractEvent:
    """An event signature plus enough type information to decode its logs."""

    name: str
    inputs: Tuple[Tuple[str, str], ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(kind for _, kind in self.inputs)})"

    @property
    def topic(self) -> str:
        return "0x" + keccak(text=self.signature).hex()

    def decode_log(self, log: Mapping[str, Any]) -> "EventLog":
        """Decode a raw log entry.

        Indexed parameters are read from the topics in declaration order and
        the remainder from the data field, so the same description decodes
        logs whether or not the leading parameters were declared indexed.
        """

        topics = list(log.get("topics") or [])
        if not topics or str(topics[0]).lower() != self.topic.lower():
            raise ValueError(f"log is not a {self.signature} event")
        indexed_count = len(topics) - 1
        if indexed_count > len(self.inputs):
            raise ValueError(f"{self.signature} log carries too many topics")

        values: Dict[str, Any] = {}
        for (name, kind), topic in zip(self.inputs[:indexed_count], topics[1:]):
            values[name] = _normalize_output(kind, abi_decode([kind], _to_bytes(topic))[0])
        remainder = self.inputs[indexed_count:]
        if remainder:
            decoded = abi_decode([kind for _, kind in remainder], _to_bytes(log.get("data")))
            for (name, kind), value in zip(remainder, decoded):
                values[name] = _normalize_output(kind, value)

        return EventLog(
            event=self.name,
            args=values,
            address=to_checksum_address(log["address"]) if log.get("address") else None,
            block_number=_quantity(log.get("blockNumber")),
            tx_hash=log.get("transactionHash"),
            log_index=_quantity(log.get("logIndex")),
        )


@dataclass(frozen=True)
class EventLog:
    event: str
    args: Dict[str, Any] = field(default_factory=dict)
    address: str | None = None
    block_number: int | None = None
    tx_hash: str | None = None
    log_index: int | None = None


@dataclass(frozen=True)
class ContractCall:
    """One function invocation on one contract."""

    address: str
    function: ContractFunction
    args: Tuple[Any, ...] = ()
    label: str = "contract"

    def calldata(self) -> str:
        return self.function.encode_input(self.args)

    def decode(self, raw: str | bytes | None) -> Any:
        return self.function.decode_output(raw)

    def describe(self) -> str:
        rendered = ", ".join(str(arg) for arg in self.args)
        return f"{self.label}.{self.function.name}({rendered})"

    def as_transaction(self, sender: str | None = None, value: int | None = None) -> Dict[str, Any]:
        tx: Dict[str, Any] = {"to": self.address, "data": self.calldata()}
        if sender is not None:
            tx["from"] = sender
        if value:
            tx["value"] = hex(value)
        return tx


class Contract:
    """Base class for bindings: an address plus a human label for logs."""

    label = "contract"

    def __init__(self, address: str) -> None:
        if not is_address(address):
            raise AddressResolutionError(f"Invalid {self.label} address: {address}")
        self.address = to_checksum_address(address)

    def _call(self, function: ContractFunction, *args: Any) -> ContractCall:
        return ContractCall(self.address, function, tuple(args), label=self.label)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"


# ERC-20 ----------------------------------------------------------------------

BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))
ALLOWANCE = ContractFunction("allowance", ("address", "address"), ("uint256",))
APPROVE = ContractFunction("approve", ("address", "uint256"), ("bool",))
TRANSFER = ContractFunction("transfer", ("address", "uint256"), ("bool",))
TRANSFER_FROM = ContractFunction("transferFrom", ("address", "address", "uint256"), ("bool",))


class Erc20Contract(Contract):
    label = "ERC20"

    def balance_of(self, owner: str) -> ContractCall:
        return self._call(BALANCE_OF, owner)

    def allowance(self, owner: str, spender: str) -> ContractCall:
        return self._call(ALLOWANCE, owner, spender)

    def approve(self, spender: str, amount: AmountValue | int) -> ContractCall:
        return self._call(APPROVE, spender, amount)

    def transfer(self, recipient: str, amount: AmountValue | int) -> ContractCall:
        return self._call(TRANSFER, recipient, amount)

    def transfer_from(self, owner: str, recipient: str, amount: AmountValue | int) -> ContractCall:
        return self._call(TRANSFER_FROM, owner, recipient, amount)


class ScmContract(Erc20Contract):
    label = "SCM"


# WETH9 -----------------------------------------------------------------------

DEPOSIT = ContractFunction("deposit", (), (), payable=True)
WITHDRAW = ContractFunction("withdraw", ("uint256",), ())


class Weth9Contract(Erc20Contract):
    label = "WETH"

    def deposit(self) -> ContractCall:
        return self._call(DEPOSIT)

    def withdraw(self, amount: AmountValue | int) -> ContractCall:
        return self._call(WITHDRAW, amount)


# ICO -------------------------------------------------------------------------

ICO_STATE = ContractFunction("state", (), ("uint8",))
ICO_LEFT_ETH = ContractFunction("leftEth", (), ("uint256",))
ICO_LEFT_SCM = ContractFunction("leftScm", (), ("uint256",))
ICO_SCM = ContractFunction("scm", (), ("address",))
ICO_WETH = ContractFunction("weth", (), ("address",))
ICO_CLOSE_TIME = ContractFunction("closeTime", (), ("uint256",))
ICO_FINISH_TIME = ContractFunction("finishTime", (), ("uint256",))
ICO_BALANCE_ETH = ContractFunction("balanceEth", ("address",), ("uint256",))
ICO_BALANCE_SCM = ContractFunction("balanceScm", ("address",), ("uint256",))
ICO_FUND = ContractFunction("fund", ("uint256",), ())
ICO_FUND_ANY = ContractFunction("fundAny", ("uint256",), ())
ICO_CLAIM = ContractFunction("claim", (), ())

ICO_CLOSED_EVENT = ContractEvent("IcoClosed", (("closeTime", "uint256"), ("finishTime", "uint256")))
FUND_EVENT = ContractEvent("Fund", (("buyer", "address"), ("eth", "uint256"), ("scm", "uint256")))


class IcoContract(Contract):
    label = "ICO"

    def state(self) -> ContractCall:
        return self._call(ICO_STATE)

    def left_eth(self) -> ContractCall:
        return self._call(ICO_LEFT_ETH)

    def left_scm(self) -> ContractCall:
        return self._call(ICO_LEFT_SCM)

    def scm(self) -> ContractCall:
        return self._call(ICO_SCM)

    def weth(self) -> ContractCall:
        return self._call(ICO_WETH)

    def close_time(self) -> ContractCall:
        return self._call(ICO_CLOSE_TIME)

    def finish_time(self) -> ContractCall:
        return self._call(ICO_FINISH_TIME)

    def balance_eth(self, owner: str) -> ContractCall:
        return self._call(ICO_BALANCE_ETH, owner)

    def balance_scm(self, owner: str) -> ContractCall:
        return self._call(ICO_BALANCE_SCM, owner)

    def fund(self, amount: AmountValue | int) -> ContractCall:
        return self._call(ICO_FUND, amount)

    def fund_any(self, amount: AmountValue | int) -> ContractCall:
        return self._call(ICO_FUND_ANY, amount)

    def claim(self) -> ContractCall:
        return self._call(ICO_CLAIM)


# Address resolution ----------------------------------------------------------

# Canonical WETH deployments keyed by network id.
KNOWN_ADDRESSES: Dict[str, Dict[str, str]] = {
    "weth": {
        "1": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "3": "0xc778417E063141139Fce010982780140Aa0cD5Ab",
        "4": "0xc778417E063141139Fce010982780140Aa0cD5Ab",
        "42": "0xd0A1E359811322d97991E03f863a0C30C2cF029C",
    },
    "ico": {},
    "scm": {},
}

_ENV_NAMES = {"ico": "ICO_ADDRESS", "weth": "WETH_ADDRESS", "scm": "SCM_ADDRESS"}


def resolve_contract_address(name: str, override: str | None, network_id: str | None) -> str:
    """Return the address for contract ``name``.

    An explicit override wins; otherwise the well-known table is consulted
    for ``network_id``.
    """

    key = name.lower()
    if key not in KNOWN_ADDRESSES:
        raise AddressResolutionError(f"Unknown contract name: {name}")
    env_name = _ENV_NAMES[key]
    if override:
        if not is_address(override):
            raise AddressResolutionError(f"invalid {env_name}: {override}")
        return to_checksum_address(override)
    known = KNOWN_ADDRESSES[key].get(str(network_id)) if network_id is not None else None
    if known is None:
        raise AddressResolutionError(
            f"there is no known instance of {name.upper()} on network {network_id}; "
            f"you should specify its address manually with the {env_name} environment variable"
        )
    logger.debug("Resolved %s on network %s to %s", name, network_id, known)
    return to_checksum_address(known)


def _abi_value(arg: Any) -> Any:
    if isinstance(arg, AmountValue):
        return arg.as_base_units()
    return arg


def _normalize_output(kind: str, value: Any) -> Any:
    if kind == "address" and isinstance(value, str):
        return to_checksum_address(value)
    return value


def _to_bytes(raw: str | bytes | None) -> bytes:
    if raw is None:
        return b""
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    text = raw[2:] if raw.startswith(("0x", "0X")) else raw
    return bytes.fromhex(text)


def _quantity(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 16) if str(value).startswith("0x") else int(value)
