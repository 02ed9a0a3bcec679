# event_dispatcher.py
import asyncio
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from services.oracles.client import OracleClient
from services.oracles.contracts import ORACLES, PRICE, QA, CHAT, oracle_spec
from services.oracles.exceptions import AccountUnavailableError, ContractNotConfiguredError
from services.oracles.model import (
    PageState, event_answer, parse_price_payload, render_qa_answer, render_chat_answer,
    build_chat_query, UNKNOWN_ANSWER, QA_WORKING_TEXT, PRICE_WORKING_STATUS,
    PRICE_UPDATED_STATUS, ASK_LABEL, ASK_WORKING_LABEL, FAILURE_STATUS,
)

log = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    question: Optional[str]
    generation: int
    task: Optional[asyncio.Task] = None
    answered: bool = False


@dataclass
class OracleSession:
    """State of one page session: sender account, pending requests and what the page shows."""
    page: PageState
    account: Optional[str] = None
    pending: Dict[str, PendingRequest] = field(default_factory=dict)

    def is_current(self, oracle_type: str, request: PendingRequest) -> bool:
        return self.pending.get(oracle_type) is request


class Subscription:
    """Polls one oracle's event filter and hands every entry to the dispatcher."""

    def __init__(self, oracle_type: str, event_filter, handler: Callable, poll_interval: float):
        self.oracle_type = oracle_type
        self.event_filter = event_filter
        self.handler = handler
        self.poll_interval = poll_interval
        self.task: Optional[asyncio.Task] = None

    def start(self):
        self.task = asyncio.create_task(self._poll(), name=f"subscription-{self.oracle_type}")

    async def _poll(self):
        failing = False
        while True:
            try:
                entries = await asyncio.to_thread(self.event_filter.get_new_entries)
            except Exception as e:
                log.warning(f"[{self.oracle_type.upper()}] Event poll failed: {e}")
                # Report once per failure streak, not on every poll
                if not failing:
                    self.handler(self.oracle_type, e, None)
                failing = True
            else:
                failing = False
                for entry in entries:
                    self.handler(self.oracle_type, None, entry)
            await asyncio.sleep(self.poll_interval)

    async def cancel(self):
        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass


class EventDispatcher:
    """
    Turns user actions into oracle transactions and oracle answer events into
    page updates.

    Answers carry no request id, so each event is paired with whatever question
    is pending for its oracle type when it arrives. Overlapping submissions of
    the same type can therefore pair an answer with the wrong question.
    """

    def __init__(self, client: OracleClient, session: OracleSession, account_index: int = 1,
                 chat_endpoint: str = "", poll_interval: float = 2):
        self.client = client
        self.session = session
        self.account_index = account_index
        self.chat_endpoint = chat_endpoint
        self.poll_interval = poll_interval
        self.subscriptions: Dict[str, Subscription] = {}
        self._generations = itertools.count(1)

    @property
    def page(self) -> PageState:
        return self.session.page

    async def start(self):
        """Resolve the sender account and subscribe to every available oracle."""
        try:
            self.session.account = await asyncio.to_thread(self.client.resolve_account, self.account_index)
        except AccountUnavailableError as e:
            log.error(f"No sender account: {e}")
            self.page.update(alert=str(e))

        for oracle_type in ORACLES:
            try:
                event_filter = await asyncio.to_thread(self.client.create_event_filter, oracle_type)
            except ContractNotConfiguredError as e:
                log.warning(f"Not subscribing to {oracle_type}: {e}")
                continue
            except Exception as e:
                log.error(f"Failed to subscribe to {oracle_type} answers: {e}", exc_info=True)
                continue
            subscription = Subscription(oracle_type, event_filter, self.on_event, self.poll_interval)
            subscription.start()
            self.subscriptions[oracle_type] = subscription
            log.info(f"Watching {oracle_spec(oracle_type)['event']} for the {oracle_type} oracle.")

    async def close(self):
        """Cancel in-flight sends and release every subscription."""
        in_flight = [r.task for r in self.session.pending.values() if r.task and not r.task.done()]
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
        for oracle_type, subscription in list(self.subscriptions.items()):
            await subscription.cancel()
            await asyncio.to_thread(self.client.uninstall_filter, subscription.event_filter)
            log.info(f"Released {oracle_type} subscription.")
        self.subscriptions.clear()

    # --- Submission ---
    async def submit(self, oracle_type: str, payload: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        Record the request as pending, show the working state and send the
        transaction in a task. Returns the task, or None if nothing was sent.
        """
        oracle_spec(oracle_type)
        if oracle_type in (QA, CHAT) and not payload:
            if oracle_type == CHAT:
                return None
            log.warning("Submitting an empty question to the Q&A oracle.")

        previous = self.session.pending.get(oracle_type)
        if previous and previous.task and not previous.task.done():
            log.info(f"[{oracle_type.upper()}] Superseding in-flight request #{previous.generation}.")
            previous.task.cancel()

        request = PendingRequest(question=payload, generation=next(self._generations))
        self.session.pending[oracle_type] = request

        if oracle_type == PRICE:
            self.page.update(status=PRICE_WORKING_STATUS)
            args = ()
        elif oracle_type == QA:
            self.page.update(answer_text=QA_WORKING_TEXT)
            args = (payload or "",)
        else:
            self.page.update(ask_enabled=False, ask_label=ASK_WORKING_LABEL)
            args = (build_chat_query(payload, self.chat_endpoint),)

        log.info(f"[{oracle_type.upper()}] Submitting request #{request.generation}: {payload!r}")
        request.task = asyncio.create_task(self._send(oracle_type, request, args))
        return request.task

    async def _send(self, oracle_type: str, request: PendingRequest, args: tuple):
        try:
            if not self.session.account:
                raise AccountUnavailableError("No sender account is available.")
            return await asyncio.to_thread(self.client.send, oracle_type, self.session.account, *args)
        except asyncio.CancelledError:
            log.info(f"[{oracle_type.upper()}] Request #{request.generation} cancelled.")
            raise
        except Exception as e:
            log.error(f"[{oracle_type.upper()}] Request #{request.generation} failed: {e}", exc_info=True)
            if not self.session.is_current(oracle_type, request):
                log.info(f"[{oracle_type.upper()}] Ignoring failure of superseded request #{request.generation}.")
                return None
            self.page.update(status=FAILURE_STATUS[oracle_type])
            if oracle_type == CHAT:
                self.page.update(ask_enabled=True, ask_label=ASK_LABEL)
            return None

    # --- Answers ---
    def on_event(self, oracle_type: str, error: Optional[Exception], result):
        """Render one answer event. Errors and empty answers become placeholders."""
        spec = oracle_spec(oracle_type)
        answer = "" if error else event_answer(result, spec["answer_field"])
        if error or not answer:
            log.warning(f"[{oracle_type.upper()}] Unknown answer (error={error}).")
        else:
            log.info(f"[{oracle_type.upper()}] {spec['event']}: {answer!r}")
        self.page.record_event(oracle_type, result, error)

        request = self.session.pending.get(oracle_type)
        if request:
            request.answered = True

        if oracle_type == PRICE:
            prices = None if error else parse_price_payload(answer)
            if prices is None:
                self.page.update(diesel_price=UNKNOWN_ANSWER, lpg_price=UNKNOWN_ANSWER)
                return
            diesel, lpg = prices
            self.page.update(diesel_price=diesel, lpg_price=lpg, status=PRICE_UPDATED_STATUS)
        elif oracle_type == QA:
            self.page.update(answer_text=render_qa_answer(error, answer))
        else:
            question = request.question if request else ""
            self.page.prepend_history(question, render_chat_answer(error, answer))
            self.page.update(ask_enabled=True, ask_label=ASK_LABEL)


def build_dispatcher(client: OracleClient, account_index: int = 1, chat_endpoint: str = "",
                     poll_interval: float = 2, event_log_size: int = 200) -> EventDispatcher:
    page = PageState(events=deque(maxlen=event_log_size))
    return EventDispatcher(client, OracleSession(page=page), account_index=account_index,
                           chat_endpoint=chat_endpoint, poll_interval=poll_interval)


class SessionRunner:
    """
    Runs a dispatcher on its own event loop in a daemon thread so a page that
    re-executes top to bottom (Streamlit) can keep subscriptions alive.
    """

    def __init__(self, dispatcher: EventDispatcher):
        self.dispatcher = dispatcher
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, name="oracle-session", daemon=True)

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self, timeout: float = 30):
        self.thread.start()
        asyncio.run_coroutine_threadsafe(self.dispatcher.start(), self.loop).result(timeout)
        log.info("Oracle session started.")

    def submit(self, oracle_type: str, payload: Optional[str] = None, timeout: float = 10):
        """Schedule a submission; returns once the working state is shown."""
        future = asyncio.run_coroutine_threadsafe(self.dispatcher.submit(oracle_type, payload), self.loop)
        return future.result(timeout)

    def snapshot(self) -> Dict:
        return self.dispatcher.page.snapshot()

    def stop(self, timeout: float = 10):
        try:
            asyncio.run_coroutine_threadsafe(self.dispatcher.close(), self.loop).result(timeout)
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self.thread.join(timeout)
            log.info("Oracle session stopped.")
