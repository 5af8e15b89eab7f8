"""Command line interface for the SCM token sale.

Commands are grouped the same way the contracts are: ``ico`` talks to the
sale itself, ``weth`` and ``scm`` manage the two tokens involved. Every
handler is registered in :data:`COMMANDS` under its command path and is
invoked through :func:`dispatch`.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Callable, Dict, Sequence, Tuple

from eth_utils import is_address, to_checksum_address

from .config import AppConfig, ConfigurationError, load_config
from .contracts import AddressResolutionError, Erc20Contract
from .gateway import ReceiptTimeout, TransactionReceipt
from .model import FundingPolicy
from .rpc_client import RPCError, RPCTransportError, format_rpc_hint
from .signer import Signer, signer_from_config
from .tokens import (
    token_allowance,
    token_approve,
    token_balance,
    token_transfer,
    weth_deposit,
    weth_withdraw,
)
from .units import ETH, SCM, AmountValue, Currency, ParseError
from .workflows import (
    WorkflowContext,
    run_balance_query,
    run_claim_workflow,
    run_funding_workflow,
    run_info_query,
    run_wait_workflow,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://localhost:8545"


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _amount(currency: Currency) -> Callable[[str], AmountValue]:
    def parse(raw: str) -> AmountValue:
        try:
            return AmountValue.parse(raw, currency)
        except ParseError as exc:
            raise argparse.ArgumentTypeError(str(exc)) from exc

    return parse


def _address(raw: str) -> str:
    if not is_address(raw):
        raise argparse.ArgumentTypeError(f"invalid address: {raw}")
    return to_checksum_address(raw)


def _add_token_commands(group: argparse._SubParsersAction, currency: Currency) -> None:
    balance_parser = group.add_parser("balance", help="Get balance of the given wallet")
    balance_parser.add_argument(
        "address",
        nargs="?",
        type=_address,
        help="Account we're fetching balance for (uses your account by default)",
    )

    transfer_parser = group.add_parser("transfer", help="Transfer funds between accounts")
    transfer_parser.add_argument("recipient", type=_address, help="Where are we transferring funds to")
    transfer_parser.add_argument("funds", type=_amount(currency), help="Amount of funds we are transferring")
    transfer_parser.add_argument(
        "--owner",
        type=_address,
        default=None,
        help="Where are we transferring funds from (uses your account by default)",
    )

    allowance_parser = group.add_parser(
        "allowance", help="Check allowance for the given owner-spender pair"
    )
    allowance_parser.add_argument("owner", type=_address, help="Who owns tokens")
    allowance_parser.add_argument("spender", type=_address, help="Who will be allowed to spend tokens")

    approve_parser = group.add_parser(
        "approve", help="Allow some other user to withdraw funds from your account"
    )
    approve_parser.add_argument("spender", type=_address, help="Who is allowed to withdraw funds")
    approve_parser.add_argument(
        "value",
        type=_amount(currency),
        help="Amount of funds they are allowed to withdraw (overrides previous allowance)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scm-ico",
        description="Use the CLI to spend your precious ETH on SCM tokens",
    )
    parser.add_argument(
        "--host",
        default=None,
        metavar="URL",
        help=f"Endpoint for the Ethereum node (default: ETH_RPC_URL or {DEFAULT_HOST})",
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument(
        "--gas-price",
        default=None,
        metavar="PRICE",
        help="Gas price for locally signed transactions, in wei or with a suffix such as 20gwei",
    )
    parser.add_argument(
        "--max-gas-price",
        default=None,
        metavar="PRICE",
        help="Refuse to sign locally when the selected gas price exceeds this",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ico_parser = subparsers.add_parser("ico", help="Participate in the SCM ICO")
    ico = ico_parser.add_subparsers(dest="subcommand", required=True)

    info_parser = ico.add_parser("info", help="Get status of the ICO")
    info_parser.add_argument("--json", dest="as_json", action="store_true", help="Emit JSON")

    balance_parser = ico.add_parser(
        "balance", help="Get number of SCM tokens available to the given user"
    )
    balance_parser.add_argument(
        "address",
        nargs="?",
        type=_address,
        help="Account we're fetching balance for (uses your account by default)",
    )
    balance_parser.add_argument("--eth", action="store_true", help="Display balance in ETH")

    fund_parser = ico.add_parser("fund", help="Buy SCM")
    fund_parser.add_argument(
        "--wrap-weth", action="store_true", help="Wrap and approve ETH if you don't have enough WETH"
    )
    fund_parser.add_argument(
        "--approve-weth", action="store_true", help="Ensure that the ICO is authorized to spend WETH"
    )
    fund_parser.add_argument(
        "--best-effort",
        action="store_true",
        help="Take whatever the sale has left instead of failing when it cannot take the full amount",
    )
    fund_parser.add_argument("funds", type=_amount(ETH), help="Amount of ETH to contribute to the ICO")

    claim_parser = ico.add_parser("claim", help="Claim purchased SCM")
    claim_parser.add_argument("--wait", action="store_true", help="If the ICO is not finished, wait for it")

    ico.add_parser("wait", help="Wait for the ICO to finish")

    weth_parser = subparsers.add_parser("weth", help="Manage wrapped ether tokens")
    weth = weth_parser.add_subparsers(dest="subcommand", required=True)
    _add_token_commands(weth, ETH)
    deposit_parser = weth.add_parser("deposit", help="Wrap ETH into WETH")
    deposit_parser.add_argument("funds", type=_amount(ETH), help="Amount of ETH to wrap")
    withdraw_parser = weth.add_parser("withdraw", help="Unwrap WETH back into ETH")
    withdraw_parser.add_argument("funds", type=_amount(ETH), help="Amount of WETH to unwrap")

    scm_parser = subparsers.add_parser("scm", help="Manage SCM tokens")
    scm = scm_parser.add_subparsers(dest="subcommand", required=True)
    _add_token_commands(scm, SCM)

    return parser


def _build_context(args: argparse.Namespace) -> Tuple[WorkflowContext, AppConfig]:
    config = load_config(
        config_path=args.config,
        overrides={"endpoint": args.host, "gas_price": args.gas_price, "max_gas_price": args.max_gas_price},
    )
    return WorkflowContext.from_config(config), config


def _signer(config: AppConfig) -> Signer:
    return signer_from_config(config.account)


def _print_receipt(receipt: TransactionReceipt) -> None:
    print(f"Transaction {receipt.tx_hash} mined in block {receipt.block_number}")


# ico -----------------------------------------------------------------------


def cmd_ico_info(args: argparse.Namespace) -> None:
    ctx, _ = _build_context(args)
    state = run_info_query(ctx)
    if getattr(args, "as_json", False):
        print(json.dumps(state.to_jsonable(), indent=2))
        return
    for line in state.as_lines():
        print(line)


def cmd_ico_balance(args: argparse.Namespace) -> None:
    ctx, config = _build_context(args)
    address = args.address or _signer(config).address
    print(f"ICO balance: {run_balance_query(ctx, address, in_eth=args.eth)}")


def cmd_ico_fund(args: argparse.Namespace) -> None:
    ctx, config = _build_context(args)
    policy = FundingPolicy.BEST_EFFORT if args.best_effort else FundingPolicy.STRICT
    report = run_funding_workflow(
        ctx,
        _signer(config),
        args.funds,
        policy=policy,
        wrap=args.wrap_weth,
        approve=args.approve_weth,
    )
    print("Done")
    for line in report.as_lines():
        print(line)


def cmd_ico_claim(args: argparse.Namespace) -> None:
    ctx, config = _build_context(args)
    report = run_claim_workflow(ctx, _signer(config), wait_for_finish=args.wait)
    print("Done")
    for line in report.as_lines():
        print(line)


def cmd_ico_wait(args: argparse.Namespace) -> None:
    ctx, _ = _build_context(args)
    run_wait_workflow(ctx)
    print("ICO finished")


# tokens --------------------------------------------------------------------


def _token(ctx: WorkflowContext, name: str) -> Tuple[Erc20Contract, Currency]:
    if name == "weth":
        return ctx.weth(), ETH
    return ctx.scm(), SCM


def _cmd_token_balance(args: argparse.Namespace, name: str) -> None:
    ctx, config = _build_context(args)
    token, currency = _token(ctx, name)
    owner = args.address or _signer(config).address
    print(token_balance(ctx.gateway, token, owner, currency))


def _cmd_token_transfer(args: argparse.Namespace, name: str) -> None:
    ctx, config = _build_context(args)
    token, _ = _token(ctx, name)
    receipt = token_transfer(ctx.gateway, _signer(config), token, args.recipient, args.funds, owner=args.owner)
    _print_receipt(receipt)


def _cmd_token_allowance(args: argparse.Namespace, name: str) -> None:
    ctx, _ = _build_context(args)
    token, currency = _token(ctx, name)
    print(token_allowance(ctx.gateway, token, args.owner, args.spender, currency))


def _cmd_token_approve(args: argparse.Namespace, name: str) -> None:
    ctx, config = _build_context(args)
    token, _ = _token(ctx, name)
    _print_receipt(token_approve(ctx.gateway, _signer(config), token, args.spender, args.value))


def cmd_weth_deposit(args: argparse.Namespace) -> None:
    ctx, config = _build_context(args)
    _print_receipt(weth_deposit(ctx.gateway, _signer(config), ctx.weth(), args.funds))


def cmd_weth_withdraw(args: argparse.Namespace) -> None:
    ctx, config = _build_context(args)
    _print_receipt(weth_withdraw(ctx.gateway, _signer(config), ctx.weth(), args.funds))


def _token_handler(action: Callable[[argparse.Namespace, str], None], name: str) -> Callable[[argparse.Namespace], None]:
    def handler(args: argparse.Namespace) -> None:
        action(args, name)

    return handler


COMMANDS: Dict[Tuple[str, ...], Callable[[argparse.Namespace], None]] = {
    ("ico", "info"): cmd_ico_info,
    ("ico", "balance"): cmd_ico_balance,
    ("ico", "fund"): cmd_ico_fund,
    ("ico", "claim"): cmd_ico_claim,
    ("ico", "wait"): cmd_ico_wait,
    ("weth", "deposit"): cmd_weth_deposit,
    ("weth", "withdraw"): cmd_weth_withdraw,
}
for _name in ("weth", "scm"):
    COMMANDS[(_name, "balance")] = _token_handler(_cmd_token_balance, _name)
    COMMANDS[(_name, "transfer")] = _token_handler(_cmd_token_transfer, _name)
    COMMANDS[(_name, "allowance")] = _token_handler(_cmd_token_allowance, _name)
    COMMANDS[(_name, "approve")] = _token_handler(_cmd_token_approve, _name)


def dispatch(path: Sequence[str], args: argparse.Namespace) -> None:
    handler = COMMANDS.get(tuple(path))
    if handler is None:
        raise CLIError(f"Unknown command: {' '.join(path)}")
    handler(args)


def _hint_for(exc: BaseException) -> str | None:
    current: BaseException | None = exc
    while current is not None:
        if isinstance(current, RPCError):
            return format_rpc_hint(current)
        reason = getattr(current, "reason", None)
        if isinstance(reason, str) and reason:
            return format_rpc_hint({"message": reason})
        current = current.__cause__
    return None


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        dispatch((args.command, args.subcommand), args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        parser.exit(130, "error: interrupted; steps already mined are not rolled back\n")
    except (
        CLIError,
        ConfigurationError,
        AddressResolutionError,
        RPCError,
        RPCTransportError,
        ReceiptTimeout,
        RuntimeError,
        ValueError,
    ) as exc:
        logger.debug("Command failed", exc_info=True)
        message = f"error: {exc}\n"
        hint = _hint_for(exc)
        if hint:
            message += f"hint: {hint}\n"
        parser.exit(1, message)


if __name__ == "__main__":
    main(sys.argv[1:])
