# services/oracles/model.py
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple
from urllib.parse import quote

from .contracts import PRICE, QA, CHAT

log = logging.getLogger(__name__)

# --- Page Messages ---
UNKNOWN_ANSWER = "小i不知道啦！"
QA_UNKNOWN_ANSWER = "Sorry, I can't understand YOUR Question."
QA_ANSWER_PREFIX = "答案:"
QA_WORKING_TEXT = "查询中..."
PRICE_WORKING_STATUS = "获取价格中... "
PRICE_UPDATED_STATUS = "价格已更新... "
ASK_LABEL = "对话"
ASK_WORKING_LABEL = "回答中,请等待..."

FAILURE_STATUS = {
    PRICE: "Error getting dieselPrice; see log.",
    QA: "Error getting answer; see log.",
    CHAT: "Error ask xiaoi; see log.",
}

ACCOUNTS_ERROR_ALERT = "There was an error fetching your accounts."
NO_ACCOUNTS_ALERT = "Couldn't get any accounts! Make sure your Ethereum client is configured correctly."

# Characters JavaScript's encodeURI leaves untouched
_URI_SAFE = ";,/?:@&=+$-_.!~*'()#"


def event_answer(result: Any, answer_field: str) -> str:
    """Pull the answer field out of a decoded event entry; empty when absent."""
    if not result:
        return ""
    args = result.get("args") or {}
    value = args.get(answer_field)
    return value if value else ""


def format_price_value(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_price_payload(raw: str) -> Optional[Tuple[str, str]]:
    """
    Decode the price oracle's JSON blob into (diesel, lpg).
    Returns None for anything that isn't an object carrying both fields.
    """
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        log.warning(f"Price payload is not valid JSON ({e}): {raw!r}")
        return None
    if not isinstance(payload, dict) or "diesel" not in payload or "lpg" not in payload:
        log.warning(f"Price payload is missing 'diesel' or 'lpg': {raw!r}")
        return None
    return format_price_value(payload["diesel"]), format_price_value(payload["lpg"])


def render_qa_answer(error: Optional[Exception], answer: str) -> str:
    if error or not answer:
        return QA_UNKNOWN_ANSWER
    return f"{QA_ANSWER_PREFIX}{answer}"


def decode_chat_answer(raw: str) -> str:
    """Resolve backslash escapes (\\uXXXX, \\n, ...) the chat service leaves in its text."""
    if "\\" not in raw:
        return raw
    try:
        return raw.encode("latin-1", "backslashreplace").decode("unicode_escape")
    except UnicodeDecodeError:
        log.warning(f"Could not decode escapes in chat answer, showing it as-is: {raw!r}")
        return raw


def render_chat_answer(error: Optional[Exception], answer: str) -> str:
    if error or not answer:
        return UNKNOWN_ANSWER
    return decode_chat_answer(answer)


def build_chat_query(question: str, endpoint: str) -> str:
    """The oracle query string the chat contract resolves off-chain."""
    return f"json({endpoint}?question={quote(question, safe=_URI_SAFE)}).result"


@dataclass
class PageState:
    """
    Everything the page renders. The dispatcher writes it from the event loop;
    the page reads it through snapshot().
    """
    answer_text: str = ""
    diesel_price: str = ""
    lpg_price: str = ""
    status: str = ""
    history: List[Tuple[str, str]] = field(default_factory=list)
    ask_enabled: bool = True
    ask_label: str = ASK_LABEL
    alert: Optional[str] = None
    events: Deque[Dict] = field(default_factory=lambda: deque(maxlen=200))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def update(self, **fields):
        with self._lock:
            for name, value in fields.items():
                if not hasattr(self, name) or name.startswith("_"):
                    raise AttributeError(f"PageState has no region {name!r}")
                setattr(self, name, value)

    def prepend_history(self, question: str, answer: str):
        with self._lock:
            self.history.insert(0, (question, answer))

    def record_event(self, oracle_type: str, result: Any, error: Optional[Exception]):
        tx_hash = result.get("transactionHash") if result else None
        entry = {
            "received_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            "oracle": oracle_type,
            "block": result.get("blockNumber") if result else None,
            "tx_hash": tx_hash.hex() if hasattr(tx_hash, "hex") else tx_hash,
            "error": str(error) if error else "",
        }
        with self._lock:
            self.events.appendleft(entry)

    def snapshot(self) -> Dict:
        with self._lock:
            return {
                "answer_text": self.answer_text,
                "diesel_price": self.diesel_price,
                "lpg_price": self.lpg_price,
                "status": self.status,
                "history": list(self.history),
                "ask_enabled": self.ask_enabled,
                "ask_label": self.ask_label,
                "alert": self.alert,
                "events": list(self.events),
            }
