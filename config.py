import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)

# --- Provider and Account ---
RPC_URL = os.getenv("RPC_URL", "http://localhost:8545")
ACCOUNT_INDEX = int(os.getenv("ACCOUNT_INDEX", "1"))
ORACLE_PRIVATE_KEY = os.getenv("ORACLE_PRIVATE_KEY")

# --- Transaction Parameters ---
# Every oracle entry point is payable; the fee covers the off-chain query.
TX_GAS = int(os.getenv("TX_GAS", "3000000"))
TX_VALUE_ETHER = float(os.getenv("TX_VALUE_ETHER", "1"))
RECEIPT_TIMEOUT_SECONDS = int(os.getenv("RECEIPT_TIMEOUT_SECONDS", "120"))

# --- Event Subscriptions ---
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "2"))
EVENT_LOG_SIZE = int(os.getenv("EVENT_LOG_SIZE", "200"))

# --- Contract Locations ---
# Truffle build directory (build/contracts). Explicit addresses below win over it.
ARTIFACTS_DIR = os.getenv("ARTIFACTS_DIR")
CONTRACT_ADDRESSES = {
    "price": os.getenv("DIESEL_PRICE_ADDRESS"),
    "qa": os.getenv("WOLFRAM_ALPHA_ADDRESS"),
    "chat": os.getenv("XIAOI_ADDRESS"),
}

# The chat oracle fetches its answer from this endpoint
CHAT_ENDPOINT = os.getenv("CHAT_ENDPOINT", "https://rgfgeptasy.localtunnel.me/xiaoi/ask")

if not ARTIFACTS_DIR and not all(CONTRACT_ADDRESSES.values()):
    log.warning("ARTIFACTS_DIR is not set and some oracle addresses are missing. Those oracles will be disabled.")
