# services/oracles/contracts.py
import json
import logging
from pathlib import Path
from typing import Dict, Optional

from web3 import Web3
from web3.contract import Contract

from .exceptions import ContractNotConfiguredError

log = logging.getLogger(__name__)

PRICE = "price"
QA = "qa"
CHAT = "chat"

# Minimal ABIs: the payable entry point and the answer event of each oracle
DIESEL_PRICE_ABI = json.loads('[{"inputs":[],"name":"update","outputs":[],"stateMutability":"payable","type":"function"},{"anonymous":false,"inputs":[{"indexed":false,"internalType":"string","name":"price","type":"string"}],"name":"newDieselPrice","type":"event"}]')
WOLFRAM_ALPHA_ABI = json.loads('[{"inputs":[{"internalType":"string","name":"question","type":"string"}],"name":"query","outputs":[],"stateMutability":"payable","type":"function"},{"anonymous":false,"inputs":[{"indexed":false,"internalType":"string","name":"answer","type":"string"}],"name":"newWolframAnswer","type":"event"}]')
XIAOI_ABI = json.loads('[{"inputs":[{"internalType":"string","name":"question","type":"string"}],"name":"ask","outputs":[],"stateMutability":"payable","type":"function"},{"anonymous":false,"inputs":[{"indexed":false,"internalType":"string","name":"answer","type":"string"}],"name":"newAskAnswer","type":"event"}]')

ORACLES: Dict[str, Dict] = {
    PRICE: {
        "name": "DieselPrice",
        "entry_point": "update",
        "event": "newDieselPrice",
        "answer_field": "price",
        "abi": DIESEL_PRICE_ABI,
    },
    QA: {
        "name": "WolframAlpha",
        "entry_point": "query",
        "event": "newWolframAnswer",
        "answer_field": "answer",
        "abi": WOLFRAM_ALPHA_ABI,
    },
    CHAT: {
        "name": "Xiaoi",
        "entry_point": "ask",
        "event": "newAskAnswer",
        "answer_field": "answer",
        "abi": XIAOI_ABI,
    },
}


def oracle_spec(oracle_type: str) -> Dict:
    try:
        return ORACLES[oracle_type]
    except KeyError:
        raise ValueError(f"Unknown oracle type: {oracle_type!r}") from None


def load_artifact(artifacts_dir: str, contract_name: str) -> Dict:
    """Read a truffle build artifact (build/contracts/<Name>.json)."""
    path = Path(artifacts_dir) / f"{contract_name}.json"
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ContractNotConfiguredError(f"No build artifact for {contract_name} at {path}") from None
    except json.JSONDecodeError as e:
        raise ContractNotConfiguredError(f"Malformed build artifact {path}: {e}") from e


def artifact_address(artifact: Dict, network_id: str) -> str:
    """Address the artifact was deployed to on the given network."""
    networks = artifact.get("networks", {})
    deployment = networks.get(str(network_id))
    if not deployment or not deployment.get("address"):
        name = artifact.get("contractName", "<unknown>")
        raise ContractNotConfiguredError(
            f"{name} has not been deployed to network {network_id} (known networks: {sorted(networks)})"
        )
    return deployment["address"]


def resolve_contract(w3: Web3, oracle_type: str, address: Optional[str] = None,
                     artifacts_dir: Optional[str] = None) -> Contract:
    """
    Build the contract object for an oracle type.

    An explicit address always wins and is paired with the artifact ABI when one
    exists, falling back to the built-in minimal ABI. Without an address the
    deployment recorded in the artifact for the node's current network is used.
    """
    spec = oracle_spec(oracle_type)
    abi = spec["abi"]
    artifact = None

    if artifacts_dir:
        try:
            artifact = load_artifact(artifacts_dir, spec["name"])
            abi = artifact.get("abi") or abi
        except ContractNotConfiguredError:
            if not address:
                raise
            log.warning(f"Artifact for {spec['name']} unavailable, using built-in ABI.")

    if not address:
        if artifact is None:
            raise ContractNotConfiguredError(f"No address or artifacts configured for {spec['name']}")
        address = artifact_address(artifact, w3.net.version)

    log.info(f"Resolved {spec['name']} ({oracle_type}) at {address}")
    return w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
