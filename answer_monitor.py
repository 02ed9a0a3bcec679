# answer_monitor.py
import asyncio
import logging
import sys

from config import (
    RPC_URL, ACCOUNT_INDEX, ORACLE_PRIVATE_KEY, TX_GAS, TX_VALUE_ETHER, RECEIPT_TIMEOUT_SECONDS,
    POLL_INTERVAL_SECONDS, EVENT_LOG_SIZE, ARTIFACTS_DIR, CONTRACT_ADDRESSES, CHAT_ENDPOINT,
)
from event_dispatcher import build_dispatcher
from services.oracles.client import connect
from services.oracles.contracts import ORACLES

log = logging.getLogger(__name__)

# Regions worth reporting when they change; history is reported by its newest entry
WATCHED_REGIONS = ("status", "answer_text", "diesel_price", "lpg_price", "ask_label", "alert")


def changed_regions(before: dict, after: dict) -> dict:
    changes = {name: after[name] for name in WATCHED_REGIONS if before.get(name) != after.get(name)}
    if len(after["history"]) > len(before.get("history", [])):
        changes["history"] = after["history"][0]
    return changes


async def monitor_answers(oracle_type: str = None, question: str = None):
    """
    Subscribe to every oracle, optionally send one request, then log each page
    update until interrupted.
    """
    try:
        client = connect(
            RPC_URL,
            addresses=CONTRACT_ADDRESSES,
            artifacts_dir=ARTIFACTS_DIR,
            private_key=ORACLE_PRIVATE_KEY,
            gas=TX_GAS,
            value_ether=TX_VALUE_ETHER,
            receipt_timeout=RECEIPT_TIMEOUT_SECONDS,
        )
    except ConnectionError as e:
        log.error(f"FATAL: {e}")
        return

    dispatcher = build_dispatcher(client, account_index=ACCOUNT_INDEX, chat_endpoint=CHAT_ENDPOINT,
                                  poll_interval=POLL_INTERVAL_SECONDS, event_log_size=EVENT_LOG_SIZE)
    await dispatcher.start()
    log.info(f"Watching {len(dispatcher.subscriptions)} oracle(s). Press Ctrl+C to stop.")

    try:
        last = dispatcher.page.snapshot()
        if last["alert"]:
            log.error(last["alert"])
        if oracle_type:
            await dispatcher.submit(oracle_type, question)

        while True:
            page = dispatcher.page.snapshot()
            for name, value in changed_regions(last, page).items():
                log.info(f"{name}: {value}")
            last = page
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
    finally:
        await dispatcher.close()


if __name__ == "__main__":
    oracle_type = sys.argv[1] if len(sys.argv) > 1 else None
    if oracle_type and oracle_type not in ORACLES:
        sys.exit(f"Usage: {sys.argv[0]} [{'|'.join(ORACLES)}] [question]")
    question = " ".join(sys.argv[2:]) or None
    try:
        asyncio.run(monitor_answers(oracle_type, question))
    except KeyboardInterrupt:
        log.info("Answer monitor stopped.")
