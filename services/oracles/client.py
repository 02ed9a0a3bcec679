# services/oracles/client.py
import logging
from typing import Dict, List, Optional

from web3 import Web3
from web3.contract import Contract

from .contracts import oracle_spec, resolve_contract, ORACLES
from .exceptions import AccountUnavailableError, ContractNotConfiguredError, TransactionFailedError
from .model import ACCOUNTS_ERROR_ALERT, NO_ACCOUNTS_ALERT

log = logging.getLogger(__name__)


class OracleClient:
    """
    Sends requests to the oracle contracts and opens filters on their answer events.

    Without a private key the node's own unlocked accounts sign the transactions,
    which is how a local development chain is normally used.
    """

    def __init__(self, w3: Web3, contracts: Dict[str, Contract], private_key: Optional[str] = None,
                 gas: int = 3000000, value_wei: int = 10**18, receipt_timeout: int = 120):
        self.w3 = w3
        self.contracts = contracts
        self.gas = gas
        self.value_wei = value_wei
        self.receipt_timeout = receipt_timeout
        self.private_key = private_key
        self.local_account = w3.eth.account.from_key(private_key) if private_key else None
        if self.local_account:
            log.info(f"Initialized local signing account: {self.local_account.address}")

    def contract(self, oracle_type: str) -> Contract:
        contract = self.contracts.get(oracle_type)
        if contract is None:
            name = oracle_spec(oracle_type)["name"]
            raise ContractNotConfiguredError(f"{name} contract is not available")
        return contract

    def get_accounts(self) -> List[str]:
        try:
            return list(self.w3.eth.accounts)
        except Exception as e:
            log.error(f"Failed to fetch accounts from the node: {e}")
            raise AccountUnavailableError(ACCOUNTS_ERROR_ALERT) from e

    def resolve_account(self, index: int) -> str:
        """Pick the sender: the local key if configured, else the node account at `index`."""
        if self.local_account:
            return self.local_account.address

        accounts = self.get_accounts()
        if not accounts:
            raise AccountUnavailableError(NO_ACCOUNTS_ALERT)
        if index >= len(accounts):
            raise AccountUnavailableError(
                f"Account index {index} is out of range; the node only has {len(accounts)} account(s)."
            )
        log.info(f"Using node account #{index}: {accounts[index]}")
        return accounts[index]

    def send(self, oracle_type: str, account: str, *args):
        """Call the oracle's entry point and wait for the receipt."""
        spec = oracle_spec(oracle_type)
        contract = self.contract(oracle_type)
        fn = getattr(contract.functions, spec["entry_point"])(*args)
        tx_params = {"from": account, "gas": self.gas, "value": self.value_wei}

        if self.local_account:
            tx_params["nonce"] = self.w3.eth.get_transaction_count(account)
            tx_params["gasPrice"] = self.w3.eth.gas_price
            tx = fn.build_transaction(tx_params)
            signed = self.w3.eth.account.sign_transaction(tx, private_key=self.private_key)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        else:
            tx_hash = fn.transact(tx_params)

        log.info(f"[{oracle_type.upper()}] {spec['name']}.{spec['entry_point']} sent. Tx Hash: {tx_hash.hex()}")
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt.get("status") == 0:
            raise TransactionFailedError(f"{spec['name']}.{spec['entry_point']} reverted in tx {tx_hash.hex()}")
        log.info(f"[{oracle_type.upper()}] Transaction mined in block {receipt.get('blockNumber')}.")
        return receipt

    def create_event_filter(self, oracle_type: str):
        spec = oracle_spec(oracle_type)
        event = getattr(self.contract(oracle_type).events, spec["event"])
        return event.create_filter(from_block="latest")

    def uninstall_filter(self, event_filter) -> bool:
        try:
            return self.w3.eth.uninstall_filter(event_filter.filter_id)
        except Exception as e:
            log.warning(f"Failed to uninstall event filter {event_filter.filter_id}: {e}")
            return False


def connect(rpc_url: str, addresses: Optional[Dict[str, Optional[str]]] = None,
            artifacts_dir: Optional[str] = None, private_key: Optional[str] = None,
            gas: int = 3000000, value_ether: float = 1, receipt_timeout: int = 120) -> OracleClient:
    """Connect to the node and resolve every oracle contract that is configured."""
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    if not w3.is_connected():
        raise ConnectionError(f"Failed to connect to the RPC URL: {rpc_url}")
    log.info(f"Successfully connected to RPC endpoint {rpc_url}.")

    addresses = addresses or {}
    contracts = {}
    for oracle_type in ORACLES:
        try:
            contracts[oracle_type] = resolve_contract(w3, oracle_type, addresses.get(oracle_type), artifacts_dir)
        except ContractNotConfiguredError as e:
            log.error(f"Disabling {oracle_type} oracle: {e}")

    return OracleClient(
        w3,
        contracts,
        private_key=private_key,
        gas=gas,
        value_wei=w3.to_wei(value_ether, "ether"),
        receipt_timeout=receipt_timeout,
    )
