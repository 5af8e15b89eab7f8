from __future__ import annotations

import pytest
from eth_abi import encode

from scm_ico.contracts import IcoContract, Weth9Contract
from scm_ico.gateway import LedgerGateway, ReceiptTimeout, TransactionReceipt, TransactionReverted
from scm_ico.rpc_client import RPCError
from scm_ico.units import AmountValue

ICO_ADDRESS = "0x1111111111111111111111111111111111111111"
WETH_ADDRESS = "0x3333333333333333333333333333333333333333"


def word(value: int) -> str:
    return "0x" + encode(["uint256"], [value]).hex()


class StubRPC:
    def __init__(self, receipts=None) -> None:
        self.calls: list[tuple] = []
        self.batches: list[list] = []
        self._receipts = list(receipts or [])

    def eth_call(self, tx, block="latest"):
        self.calls.append((tx, block))
        return word(1)

    def call_batch(self, requests_):
        self.batches.append(list(requests_))
        return [word(7), RPCError(-32000, "execution reverted"), "0x"]

    def get_transaction_receipt(self, tx_hash):
        return self._receipts.pop(0) if self._receipts else None

    def block_number(self):
        return 99

    def get_block_by_number(self, block, full_transactions=False):
        return {"number": hex(block)} if block <= 99 else None

    def get_balance(self, address, block="latest"):
        self.calls.append(({"address": address}, block))
        return 0


class StubSigner:
    address = "0x2222222222222222222222222222222222222222"

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sent: list[dict] = []

    def send(self, rpc, transaction):
        if self.error is not None:
            raise self.error
        self.sent.append(transaction)
        return "0xhash"


def mined(status: str = "0x1") -> dict:
    return {"transactionHash": "0xhash", "blockNumber": "0x64", "status": status, "gasUsed": "0x5208", "logs": []}


def test_submit_read_defaults_to_latest() -> None:
    rpc = StubRPC()
    gateway = LedgerGateway(rpc)

    assert gateway.submit_read(IcoContract(ICO_ADDRESS).state()) == 1
    assert gateway.submit_read(IcoContract(ICO_ADDRESS).state(), at_height=10) == 1
    assert [block for _, block in rpc.calls] == ["latest", 10]


def test_submit_read_batch_pins_height_and_keeps_errors_in_place() -> None:
    rpc = StubRPC()
    ico = IcoContract(ICO_ADDRESS)

    results = LedgerGateway(rpc).submit_read_batch([ico.left_eth(), ico.left_scm(), ico.close_time()], 16)

    assert {params[1] for _, params in rpc.batches[0]} == {"0x10"}
    assert results[0] == 7
    assert isinstance(results[1], RPCError)
    assert isinstance(results[2], ValueError)


def test_has_state_needs_header_and_state_lookup() -> None:
    rpc = StubRPC()
    gateway = LedgerGateway(rpc)

    assert gateway.has_state(99)
    assert not gateway.has_state(100)
    assert rpc.calls == [({"address": "0x" + "00" * 20}, 99)]


def test_submit_transaction_waits_for_receipt() -> None:
    sleeps: list[float] = []
    rpc = StubRPC(receipts=[None, {"transactionHash": "0xhash", "blockNumber": None}, mined()])
    signer = StubSigner()
    gateway = LedgerGateway(rpc, poll_interval=1.5, sleep=sleeps.append)

    receipt = gateway.submit_transaction(
        Weth9Contract(WETH_ADDRESS).deposit(), signer, value=AmountValue.parse("1eth")
    )

    assert receipt.block_number == 100
    assert receipt.gas_used == 21000
    assert receipt.succeeded
    assert sleeps == [1.5, 1.5]
    assert signer.sent[0]["value"] == hex(10**18)


def test_status_zero_receipt_raises_reverted() -> None:
    gateway = LedgerGateway(StubRPC(receipts=[mined(status="0x0")]), sleep=lambda _: None)

    with pytest.raises(TransactionReverted) as excinfo:
        gateway.submit_transaction(IcoContract(ICO_ADDRESS).claim(), StubSigner())

    assert excinfo.value.receipt.block_number == 100
    assert excinfo.value.reason is None


def test_rejected_submission_carries_revert_reason() -> None:
    signer = StubSigner(error=RPCError(3, "execution reverted: no SCM tokens to claim"))

    with pytest.raises(TransactionReverted) as excinfo:
        LedgerGateway(StubRPC()).submit_transaction(IcoContract(ICO_ADDRESS).claim(), signer)

    assert excinfo.value.reason == "no SCM tokens to claim"
    assert "ICO.claim()" in str(excinfo.value)


def test_non_revert_rpc_errors_propagate() -> None:
    signer = StubSigner(error=RPCError(-32000, "nonce too low"))

    with pytest.raises(RPCError):
        LedgerGateway(StubRPC()).submit_transaction(IcoContract(ICO_ADDRESS).claim(), signer)


def test_receipt_timeout() -> None:
    gateway = LedgerGateway(StubRPC(), poll_interval=10, receipt_timeout=25, sleep=lambda _: None)

    with pytest.raises(ReceiptTimeout) as excinfo:
        gateway.wait_for_receipt("0xhash")
    assert excinfo.value.tx_hash == "0xhash"


def test_receipt_from_rpc_defaults_missing_status_to_success() -> None:
    receipt = TransactionReceipt.from_rpc({"transactionHash": "0x1", "blockNumber": "0x2"})
    assert receipt.succeeded
    assert receipt.gas_used is None
