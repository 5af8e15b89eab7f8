from __future__ import annotations

import argparse
from types import SimpleNamespace

import pytest

from scm_ico import cli
from scm_ico.config import AccountConfig, AppConfig, ContractOverrides, RPCConfig, WorkflowConfig
from scm_ico.funding import FundingReverted
from scm_ico.model import FundingPolicy, LedgerState, SalePhase, WorkflowReport
from scm_ico.units import SCM, AmountValue

BUYER = "0x2222222222222222222222222222222222222222"
ICO_ADDRESS = "0x1111111111111111111111111111111111111111"


def _config() -> AppConfig:
    return AppConfig(
        rpc=RPCConfig(),
        account=AccountConfig(address=BUYER),
        contracts=ContractOverrides(ico=ICO_ADDRESS),
        workflow=WorkflowConfig(),
    )


@pytest.fixture
def fake_context(monkeypatch: pytest.MonkeyPatch):
    ctx = SimpleNamespace(gateway=object())
    monkeypatch.setattr(cli, "_build_context", lambda args: (ctx, _config()))
    return ctx


def test_fund_arguments_are_parsed_into_amounts() -> None:
    args = cli.build_parser().parse_args(["ico", "fund", "--wrap-weth", "--best-effort", "10eth"])

    assert (args.command, args.subcommand) == ("ico", "fund")
    assert args.funds == AmountValue.parse("10eth")
    assert args.wrap_weth and args.best_effort and not args.approve_weth


def test_scm_amounts_use_scm_suffixes() -> None:
    args = cli.build_parser().parse_args(["scm", "transfer", BUYER, "5scm"])
    assert args.funds.currency is SCM
    assert args.owner is None


def test_malformed_amount_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.build_parser().parse_args(["ico", "fund", "ten"])
    assert excinfo.value.code == 2
    assert "invalid amount 'ten'" in capsys.readouterr().err


def test_malformed_address_is_a_usage_error() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["weth", "balance", "0x1234"])


def test_every_parser_command_is_dispatchable() -> None:
    expected = {
        ("ico", name) for name in ("info", "balance", "fund", "claim", "wait")
    } | {
        ("weth", name) for name in ("balance", "transfer", "allowance", "approve", "deposit", "withdraw")
    } | {
        ("scm", name) for name in ("balance", "transfer", "allowance", "approve")
    }
    assert set(cli.COMMANDS) == expected


def test_dispatch_unknown_path_raises() -> None:
    with pytest.raises(cli.CLIError):
        cli.dispatch(("scm", "deposit"), argparse.Namespace())


def test_info_prints_state_lines(
    fake_context, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    state = LedgerState(
        block_number=5,
        phase=SalePhase.from_code(0),
        left_eth=AmountValue.parse("3eth"),
        left_scm=AmountValue.parse("30scm", SCM),
        ico_address=ICO_ADDRESS,
        scm_address=ICO_ADDRESS,
        weth_address=ICO_ADDRESS,
    )
    monkeypatch.setattr(cli, "run_info_query", lambda ctx: state)

    cli.main(["ico", "info"])

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "State: Ongoing"
    assert out[1] == "Left ETH: 3.000000000000000000eth"


def test_fund_passes_policy_and_flags(
    fake_context, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    seen = {}

    def fake_run(ctx, signer, amount, policy, wrap, approve):
        seen.update(signer=signer.address, amount=amount, policy=policy, wrap=wrap, approve=approve)
        report = WorkflowReport(steps=["wrap: skipped", "fund: submitted tx 0x1"])
        report.balances["ICO balance"] = AmountValue.parse("10scm", SCM)
        return report

    monkeypatch.setattr(cli, "run_funding_workflow", fake_run)

    cli.main(["ico", "fund", "--approve-weth", "1.5eth"])

    assert seen == {
        "signer": BUYER,
        "amount": AmountValue.parse("1.5eth"),
        "policy": FundingPolicy.STRICT,
        "wrap": False,
        "approve": True,
    }
    out = capsys.readouterr().out
    assert "Done" in out
    assert "  - wrap: skipped" in out
    assert "ICO balance: 10.000000000000000000scm" in out


def test_balance_defaults_to_own_account(
    fake_context, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(
        cli, "run_balance_query", lambda ctx, address, in_eth: AmountValue.parse("2eth") if address == BUYER else None
    )

    cli.main(["ico", "balance", "--eth"])

    assert capsys.readouterr().out.strip() == "ICO balance: 2.000000000000000000eth"


def test_token_balance_uses_scm_contract(
    fake_context, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    fake_context.scm = lambda: "scm-contract"
    fake_context.weth = lambda: "weth-contract"
    calls = []

    def fake_balance(gateway, token, owner, currency):
        calls.append((token, owner, currency))
        return AmountValue.parse("4scm", SCM)

    monkeypatch.setattr(cli, "token_balance", fake_balance)

    cli.main(["scm", "balance"])

    assert calls == [("scm-contract", BUYER, SCM)]
    assert capsys.readouterr().out.strip() == "4.000000000000000000scm"


def test_business_failures_exit_with_hint(
    fake_context, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def fail(*args, **kwargs):
        raise FundingReverted("ICO.fund(1) reverted", reason="not allowed to spend WETH")

    monkeypatch.setattr(cli, "run_funding_workflow", fail)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ico", "fund", "1eth"])

    assert excinfo.value.code == 1
    err = capsys.readouterr().err
    assert "error: ICO.fund(1) reverted" in err
    assert "--approve-weth" in err


def test_interrupt_exits_non_zero(
    fake_context, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def interrupt(ctx):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "run_wait_workflow", interrupt)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["ico", "wait"])

    assert excinfo.value.code == 130
    assert "interrupted" in capsys.readouterr().err


def test_gas_flags_reach_the_config(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setattr("scm_ico.config.DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    for name in ("SCM_ICO_GAS_PRICE", "SCM_ICO_MAX_GAS_PRICE", "ETH_RPC_URL"):
        monkeypatch.delenv(name, raising=False)
    args = cli.build_parser().parse_args(["--gas-price", "20gwei", "--max-gas-price", "50000000000", "ico", "wait"])

    _, config = cli._build_context(args)

    assert config.account.gas_price_wei == 20 * 10**9
    assert config.account.max_gas_price_wei == 50 * 10**9
