import sys, pathlib
# Ensure the project root is on Python’s import path
ROOT = pathlib.Path(__file__).parent.parent.resolve()
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pandas as pd
import streamlit as st

from config import (
    RPC_URL, ACCOUNT_INDEX, ORACLE_PRIVATE_KEY, TX_GAS, TX_VALUE_ETHER, RECEIPT_TIMEOUT_SECONDS,
    POLL_INTERVAL_SECONDS, EVENT_LOG_SIZE, ARTIFACTS_DIR, CONTRACT_ADDRESSES, CHAT_ENDPOINT, log,
)
from event_dispatcher import SessionRunner, build_dispatcher
from services.oracles.client import connect
from services.oracles.contracts import PRICE, QA, CHAT


@st.cache_resource
def get_client():
    return connect(
        RPC_URL,
        addresses=CONTRACT_ADDRESSES,
        artifacts_dir=ARTIFACTS_DIR,
        private_key=ORACLE_PRIVATE_KEY,
        gas=TX_GAS,
        value_ether=TX_VALUE_ETHER,
        receipt_timeout=RECEIPT_TIMEOUT_SECONDS,
    )


def get_runner():
    """One dispatcher per browser session, kept alive across reruns."""
    if "oracle_runner" not in st.session_state:
        dispatcher = build_dispatcher(
            get_client(),
            account_index=ACCOUNT_INDEX,
            chat_endpoint=CHAT_ENDPOINT,
            poll_interval=POLL_INTERVAL_SECONDS,
            event_log_size=EVENT_LOG_SIZE,
        )
        runner = SessionRunner(dispatcher)
        runner.start()
        st.session_state["oracle_runner"] = runner
    return st.session_state["oracle_runner"]


# —–– UI —––––––––––––––––––––––––––––––––––––––
st.set_page_config(layout="wide", page_title="Oracle dApp")
st.title("🔮 Oracle dApp")

try:
    runner = get_runner()
except ConnectionError as e:
    log.error(f"Could not start oracle session: {e}")
    st.error(f"{e}. Check RPC_URL in your .env file.")
    st.stop()


@st.fragment(run_every=POLL_INTERVAL_SECONDS)
def render_page():
    page = runner.snapshot()
    if page["alert"]:
        st.error(page["alert"])

    # --- Diesel Price ---
    st.subheader("⛽ Diesel Price")
    c1, c2, c3 = st.columns([2, 2, 1])
    c1.metric("Diesel", page["diesel_price"] or "–")
    c2.metric("LPG", page["lpg_price"] or "–")
    with c3:
        st.write("")  # Spacer
        if st.button("Refresh Price", key="refresh_price"):
            runner.submit(PRICE)
            st.rerun()
    st.caption(page["status"] or " ")

    st.markdown("---")

    # --- English Q&A ---
    st.subheader("❓ Ask WolframAlpha")
    q_col, b_col = st.columns([5, 1])
    with q_col:
        question = st.text_input("Question", key="eng_question", label_visibility="collapsed",
                                 placeholder="e.g. 'distance from earth to moon'")
    with b_col:
        if st.button("Ask", key="eng_ask"):
            runner.submit(QA, question)
            st.rerun()
    if page["answer_text"]:
        st.info(page["answer_text"])

    st.markdown("---")

    # --- Chat ---
    st.subheader("💬 Chat with Xiaoi")
    q_col, b_col = st.columns([5, 1])
    with q_col:
        chat_question = st.text_input("Question", key="xiaoi_question", label_visibility="collapsed")
    with b_col:
        if st.button(page["ask_label"], key="xiaoi_ask", disabled=not page["ask_enabled"]):
            if runner.submit(CHAT, chat_question) is not None:
                st.rerun()

    for asked, answered in page["history"]:
        st.markdown(f"**{asked}**  \n{answered}")

    # --- Event Log ---
    if page["events"]:
        with st.expander(f"📜 Received Events ({len(page['events'])})"):
            st.dataframe(pd.DataFrame(page["events"]), use_container_width=True, hide_index=True)


render_page()

st.markdown("---")
if st.button("End Session", help="Release the event subscriptions of this page"):
    runner.stop()
    del st.session_state["oracle_runner"]
    st.success("Session ended. Reload the page to start a new one.")
    st.stop()
