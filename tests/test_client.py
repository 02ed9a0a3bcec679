from unittest.mock import MagicMock, patch

import pytest

from services.oracles.client import OracleClient, connect
from services.oracles.contracts import PRICE, QA, CHAT
from services.oracles.exceptions import (
    AccountUnavailableError, ContractNotConfiguredError, TransactionFailedError,
)
from services.oracles.model import ACCOUNTS_ERROR_ALERT, NO_ACCOUNTS_ALERT

NODE_ACCOUNTS = ["0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1", "0xFFcf8FDEE72ac11b5c542428B35EEF5769C409f0"]


def make_tx_hash(value="0xabc123"):
    tx_hash = MagicMock()
    tx_hash.hex.return_value = value
    return tx_hash


@pytest.fixture
def w3():
    fake = MagicMock()
    fake.eth.accounts = list(NODE_ACCOUNTS)
    fake.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 12}
    return fake


@pytest.fixture
def contract():
    fake = MagicMock()
    fake.functions.update.return_value.transact.return_value = make_tx_hash()
    fake.functions.query.return_value.transact.return_value = make_tx_hash()
    return fake


def test_resolve_account_by_index(w3):
    client = OracleClient(w3, {})
    assert client.resolve_account(1) == NODE_ACCOUNTS[1]


def test_resolve_account_without_accounts(w3):
    w3.eth.accounts = []
    with pytest.raises(AccountUnavailableError, match="Couldn't get any accounts"):
        OracleClient(w3, {}).resolve_account(0)
    assert NO_ACCOUNTS_ALERT.startswith("Couldn't get any accounts")


def test_resolve_account_index_out_of_range(w3):
    with pytest.raises(AccountUnavailableError, match="out of range"):
        OracleClient(w3, {}).resolve_account(5)


def test_account_fetch_error_becomes_alert():
    def refuse(_eth):
        raise ConnectionError("refused")

    w3 = MagicMock()
    type(w3.eth).accounts = property(refuse)
    with pytest.raises(AccountUnavailableError) as excinfo:
        OracleClient(w3, {}).resolve_account(1)
    assert str(excinfo.value) == ACCOUNTS_ERROR_ALERT


def test_send_uses_fixed_gas_and_value(w3, contract):
    client = OracleClient(w3, {PRICE: contract, QA: contract}, gas=3000000, value_wei=10**18)

    receipt = client.send(QA, NODE_ACCOUNTS[1], "population of Paris")

    contract.functions.query.assert_called_once_with("population of Paris")
    contract.functions.query.return_value.transact.assert_called_once_with(
        {"from": NODE_ACCOUNTS[1], "gas": 3000000, "value": 10**18}
    )
    assert receipt["blockNumber"] == 12
    w3.eth.wait_for_transaction_receipt.assert_called_once()


def test_send_raises_on_revert(w3, contract):
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 12}
    client = OracleClient(w3, {PRICE: contract})

    with pytest.raises(TransactionFailedError, match="DieselPrice.update reverted"):
        client.send(PRICE, NODE_ACCOUNTS[1])


def test_send_to_unconfigured_oracle(w3):
    with pytest.raises(ContractNotConfiguredError, match="Xiaoi"):
        OracleClient(w3, {}).send(CHAT, NODE_ACCOUNTS[1], "hi")


def test_send_signs_locally_with_private_key(w3, contract):
    local = MagicMock(address=NODE_ACCOUNTS[0])
    w3.eth.account.from_key.return_value = local
    w3.eth.get_transaction_count.return_value = 4
    w3.eth.gas_price = 20
    w3.eth.send_raw_transaction.return_value = make_tx_hash()
    built = {"to": "0xoracle"}
    contract.functions.update.return_value.build_transaction.return_value = built

    client = OracleClient(w3, {PRICE: contract}, private_key="0x01")
    account = client.resolve_account(1)
    client.send(PRICE, account)

    assert account == NODE_ACCOUNTS[0]
    contract.functions.update.return_value.build_transaction.assert_called_once_with(
        {"from": NODE_ACCOUNTS[0], "gas": 3000000, "value": 10**18, "nonce": 4, "gasPrice": 20}
    )
    w3.eth.account.sign_transaction.assert_called_once_with(built, private_key="0x01")
    contract.functions.update.return_value.transact.assert_not_called()


def test_event_filter_from_latest_block(w3, contract):
    client = OracleClient(w3, {CHAT: contract})
    client.create_event_filter(CHAT)
    contract.events.newAskAnswer.create_filter.assert_called_once_with(from_block="latest")


def test_uninstall_filter_swallows_node_errors(w3):
    w3.eth.uninstall_filter.side_effect = ValueError("filter not found")
    assert OracleClient(w3, {}).uninstall_filter(MagicMock(filter_id="0x1")) is False


def resolve_only_addressed(_w3, oracle_type, address, artifacts_dir):
    if not address:
        raise ContractNotConfiguredError(f"no address for {oracle_type}")
    return MagicMock()


def test_connect_disables_unresolvable_oracles():
    with patch("services.oracles.client.Web3") as web3_cls, \
            patch("services.oracles.client.resolve_contract") as resolve:
        w3 = web3_cls.return_value
        w3.is_connected.return_value = True
        w3.to_wei.return_value = 10**18
        resolve.side_effect = resolve_only_addressed

        client = connect("http://node", addresses={PRICE: "0x1"})

    assert set(client.contracts) == {PRICE}
    assert client.value_wei == 10**18


def test_connect_fails_when_node_unreachable():
    with patch("services.oracles.client.Web3") as web3_cls:
        web3_cls.return_value.is_connected.return_value = False
        with pytest.raises(ConnectionError):
            connect("http://node")
