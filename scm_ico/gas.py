"""Gas price selection for locally signed transactions."""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Iterable, Tuple

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT_PADDING = 1.2
DEFAULT_FALLBACK_GAS_PRICE_WEI = 1_000_000_000
ENV_MIN_GAS_PRICE_FLOOR = "SCM_ICO_MIN_GAS_PRICE_WEI"
ENV_FALLBACK_GAS_PRICE = "SCM_ICO_FALLBACK_GAS_PRICE_WEI"


@dataclass
class GasPriceSelection:
    """Container for gas price decisions."""

    gas_price_wei: int
    source: str
    floors_applied: list[Tuple[str, int]]


def pad_gas_limit(estimate: int, padding: float = DEFAULT_GAS_LIMIT_PADDING) -> int:
    """Return ``estimate`` with headroom, rounded up."""

    return int(math.ceil(estimate * padding))


def _env_override(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in %s=%s; ignoring", name, raw)
        return None


def select_gas_price(
    rpc_client: Any,
    *,
    user_gas_price_wei: int | None = None,
    max_gas_price_wei: int | None = None,
) -> GasPriceSelection:
    """Select a gas price: explicit value, else the node's suggestion, never below floors."""

    floors_applied: list[Tuple[str, int]] = []
    floor_value = _env_override(ENV_MIN_GAS_PRICE_FLOOR)
    if floor_value is not None:
        floors_applied.append(("env", floor_value))

    gas_price = None
    source = "unknown"
    if user_gas_price_wei is not None:
        gas_price = int(user_gas_price_wei)
        source = "user"
    else:
        try:
            gas_price = int(rpc_client.gas_price())
            source = "eth_gasPrice"
        except Exception as exc:  # pragma: no cover - RPC errors vary
            logger.info("eth_gasPrice unavailable: %s", exc)

    if gas_price is None:
        gas_price = int(_env_override(ENV_FALLBACK_GAS_PRICE) or DEFAULT_FALLBACK_GAS_PRICE_WEI)
        source = "fallback"

    if floor_value is not None and gas_price < floor_value:
        logger.debug("Applying gas price floor %d wei over %d", floor_value, gas_price)
        gas_price = floor_value

    if max_gas_price_wei is not None and gas_price > max_gas_price_wei:
        raise ValueError(
            f"Selected gas price {gas_price} wei exceeds max-gas-price {max_gas_price_wei} wei"
        )

    return GasPriceSelection(gas_price_wei=gas_price, source=source, floors_applied=floors_applied)


def format_floors_for_log(floors: Iterable[Tuple[str, int]]) -> str:
    """Format gas price floors for user-facing logs."""

    entries = [f"{label}={rate} wei" for label, rate in floors]
    return ", ".join(entries) if entries else "none"
