"""Shared configuration loader for scm-ico."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from .units import ETH, AmountValue, ParseError


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".scm-ico.yaml"
DEFAULT_ENDPOINT = "http://localhost:8545"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_BATCH_SIZE = 100
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_RECEIPT_TIMEOUT_SECONDS = 300.0
DEFAULT_APPROVAL_CEILING = "10eth"

WRAP_POLICIES = ("full", "shortfall")
APPROVAL_POLICIES = ("ceiling", "exact")


@dataclass
class RPCConfig:
    """Connection details for the Ethereum JSON-RPC endpoint."""

    endpoint: str = DEFAULT_ENDPOINT
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def base_url(self) -> str:
        return self.endpoint.rstrip("/")


@dataclass
class AccountConfig:
    """The operator account and how its transactions get signed."""

    address: str | None = None
    password: str | None = None
    private_key: str | None = field(default=None, repr=False)
    gas_price_wei: int | None = None
    max_gas_price_wei: int | None = None


@dataclass
class ContractOverrides:
    """Explicit contract addresses taking precedence over network lookup."""

    ico: str | None = None
    weth: str | None = None
    scm: str | None = None

    def get(self, name: str) -> str | None:
        return getattr(self, name.lower(), None)


@dataclass
class WorkflowConfig:
    """Policies used by the funding workflow engine."""

    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    wrap_policy: str = "full"
    approval_policy: str = "ceiling"
    approval_ceiling: AmountValue = field(
        default_factory=lambda: AmountValue.parse(DEFAULT_APPROVAL_CEILING, ETH)
    )
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS


@dataclass
class AppConfig:
    rpc: RPCConfig
    account: AccountConfig
    contracts: ContractOverrides
    workflow: WorkflowConfig


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc
    if value <= 0:
        raise ConfigurationError(f"Expected a positive number in {source}: {raw}")
    return value


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc
    if value < 1:
        raise ConfigurationError(f"Expected a positive integer in {source}: {raw}")
    return value


def _coerce_choice(raw: Any, choices: tuple[str, ...], *, source: str) -> str | None:
    if raw is None:
        return None
    normalized = str(raw).strip().lower()
    if normalized not in choices:
        raise ConfigurationError(
            f"Invalid value in {source}: {raw} (expected one of {', '.join(choices)})"
        )
    return normalized


def _coerce_amount(raw: Any, *, source: str) -> AmountValue | None:
    if raw is None:
        return None
    if isinstance(raw, AmountValue):
        return raw
    try:
        return AmountValue.parse(str(raw), ETH)
    except ParseError as exc:
        raise ConfigurationError(f"Invalid amount in {source}: {exc}") from exc


def _coerce_gas_price(raw: Any, *, source: str) -> int | None:
    """Accept plain wei integers or suffixed amounts such as ``20gwei``."""

    if raw is None:
        return None
    text = str(raw).strip()
    if text.isdigit():
        return int(text)
    amount = _coerce_amount(text, source=source)
    return amount.as_base_units() if amount is not None else None


def _validate_endpoint(raw: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    return raw


def load_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load configuration from overrides, environment variables and YAML.

    Precedence is ``overrides`` (usually CLI flags), then the environment,
    then the config file, then built-in defaults. Override keys are flat:
    ``endpoint``, ``timeout``, ``account``, ``password``, ``private_key``,
    ``gas_price``, ``max_gas_price``, ``ico``, ``weth``, ``scm``,
    ``max_batch_size``, ``wrap_policy``, ``approval_policy``,
    ``approval_ceiling``, ``poll_interval`` and ``receipt_timeout``.
    """

    env_map = os.environ if env is None else env
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH

    file_config = _load_config_file(path, required=config_path is not None)
    rpc_section = _section(file_config, "rpc", path)
    account_section = _section(file_config, "account", path)
    contracts_section = _section(file_config, "contracts", path)
    workflow_section = _section(file_config, "workflow", path)
    override_map = {key: value for key, value in dict(overrides or {}).items() if value is not None}

    endpoint = _first_value(
        override_map.get("endpoint"),
        env_map.get("ETH_RPC_URL"),
        rpc_section.get("endpoint"),
        default=DEFAULT_ENDPOINT,
    )
    rpc = RPCConfig(
        endpoint=_validate_endpoint(str(endpoint)),
        timeout=_first_value(
            _coerce_float(override_map.get("timeout"), source="overrides"),
            _coerce_float(env_map.get("ETH_RPC_TIMEOUT"), source="ETH_RPC_TIMEOUT"),
            _coerce_float(rpc_section.get("timeout"), source=f"{path} rpc.timeout"),
            default=DEFAULT_TIMEOUT_SECONDS,
        ),
    )

    account = AccountConfig(
        address=_first_value(
            override_map.get("account"), env_map.get("ETH_ACCOUNT"), account_section.get("address")
        ),
        password=_first_value(
            override_map.get("password"), env_map.get("ETH_PASSWORD"), account_section.get("password")
        ),
        private_key=_first_value(
            override_map.get("private_key"),
            env_map.get("ETH_PRIVATE_KEY"),
            account_section.get("private_key"),
        ),
        gas_price_wei=_first_value(
            _coerce_gas_price(override_map.get("gas_price"), source="overrides"),
            _coerce_gas_price(env_map.get("SCM_ICO_GAS_PRICE"), source="SCM_ICO_GAS_PRICE"),
            _coerce_gas_price(account_section.get("gas_price"), source=f"{path} account.gas_price"),
        ),
        max_gas_price_wei=_first_value(
            _coerce_gas_price(override_map.get("max_gas_price"), source="overrides"),
            _coerce_gas_price(env_map.get("SCM_ICO_MAX_GAS_PRICE"), source="SCM_ICO_MAX_GAS_PRICE"),
            _coerce_gas_price(account_section.get("max_gas_price"), source=f"{path} account.max_gas_price"),
        ),
    )

    contracts = ContractOverrides(
        ico=_first_value(override_map.get("ico"), env_map.get("ICO_ADDRESS"), contracts_section.get("ico")),
        weth=_first_value(override_map.get("weth"), env_map.get("WETH_ADDRESS"), contracts_section.get("weth")),
        scm=_first_value(override_map.get("scm"), env_map.get("SCM_ADDRESS"), contracts_section.get("scm")),
    )

    workflow = WorkflowConfig(
        max_batch_size=_first_value(
            _coerce_int(override_map.get("max_batch_size"), source="overrides"),
            _coerce_int(env_map.get("SCM_ICO_MAX_BATCH_SIZE"), source="SCM_ICO_MAX_BATCH_SIZE"),
            _coerce_int(workflow_section.get("max_batch_size"), source=f"{path} workflow.max_batch_size"),
            default=DEFAULT_MAX_BATCH_SIZE,
        ),
        wrap_policy=_first_value(
            _coerce_choice(override_map.get("wrap_policy"), WRAP_POLICIES, source="overrides"),
            _coerce_choice(env_map.get("SCM_ICO_WRAP_POLICY"), WRAP_POLICIES, source="SCM_ICO_WRAP_POLICY"),
            _coerce_choice(
                workflow_section.get("wrap_policy"), WRAP_POLICIES, source=f"{path} workflow.wrap_policy"
            ),
            default="full",
        ),
        approval_policy=_first_value(
            _coerce_choice(override_map.get("approval_policy"), APPROVAL_POLICIES, source="overrides"),
            _coerce_choice(
                env_map.get("SCM_ICO_APPROVAL_POLICY"), APPROVAL_POLICIES, source="SCM_ICO_APPROVAL_POLICY"
            ),
            _coerce_choice(
                workflow_section.get("approval_policy"),
                APPROVAL_POLICIES,
                source=f"{path} workflow.approval_policy",
            ),
            default="ceiling",
        ),
        approval_ceiling=_first_value(
            _coerce_amount(override_map.get("approval_ceiling"), source="overrides"),
            _coerce_amount(env_map.get("SCM_ICO_APPROVAL_CEILING"), source="SCM_ICO_APPROVAL_CEILING"),
            _coerce_amount(
                workflow_section.get("approval_ceiling"), source=f"{path} workflow.approval_ceiling"
            ),
            default=AmountValue.parse(DEFAULT_APPROVAL_CEILING, ETH),
        ),
        poll_interval=_first_value(
            _coerce_float(override_map.get("poll_interval"), source="overrides"),
            _coerce_float(env_map.get("SCM_ICO_POLL_INTERVAL"), source="SCM_ICO_POLL_INTERVAL"),
            _coerce_float(workflow_section.get("poll_interval"), source=f"{path} workflow.poll_interval"),
            default=DEFAULT_POLL_INTERVAL_SECONDS,
        ),
        receipt_timeout=_first_value(
            _coerce_float(override_map.get("receipt_timeout"), source="overrides"),
            _coerce_float(env_map.get("SCM_ICO_RECEIPT_TIMEOUT"), source="SCM_ICO_RECEIPT_TIMEOUT"),
            _coerce_float(
                workflow_section.get("receipt_timeout"), source=f"{path} workflow.receipt_timeout"
            ),
            default=DEFAULT_RECEIPT_TIMEOUT_SECONDS,
        ),
    )

    return AppConfig(rpc=rpc, account=account, contracts=contracts, workflow=workflow)
