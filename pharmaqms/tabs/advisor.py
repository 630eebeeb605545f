# pharmaqms/tabs/advisor.py

import streamlit as st

from pharmaqms.prompts import ADVISOR_FALLBACK
from pharmaqms.session import get_ai_service

STARTERS = ["Draft a deviation rationale", "Explain ICH Q10", "GMP in Cell Therapy"]


def _answer(question: str) -> str:
    ai = get_ai_service()
    if ai is None:
        return ADVISOR_FALLBACK
    with st.spinner("Consulting the regulations..."):
        return ai.ask_advisor(question)


def display_advisor():
    st.header("✨ GMP Regulatory Advisor")
    st.caption("Ask about GMP compliance, validation or ICH/FDA/EMA expectations.")

    if get_ai_service() is None:
        st.warning("AI features are disabled; answers will point you to the manual sources.")

    if "advisor_messages" not in st.session_state:
        st.session_state.advisor_messages = [
            {"role": "assistant", "content": "Hello Quality Team. How can I assist with compliance today?"}
        ]

    for message in st.session_state.advisor_messages:
        with st.chat_message(message["role"]):
            st.markdown(message["content"])

    prompt = None
    cols = st.columns(len(STARTERS))
    for col, starter in zip(cols, STARTERS):
        if col.button(starter, key=f"starter_{starter}"):
            prompt = starter
    prompt = st.chat_input("Ask a regulatory question...") or prompt

    if prompt:
        st.session_state.advisor_messages.append({"role": "user", "content": prompt})
        with st.chat_message("user"):
            st.markdown(prompt)
        with st.chat_message("assistant"):
            answer = _answer(prompt)
            st.markdown(answer)
        st.session_state.advisor_messages.append({"role": "assistant", "content": answer})

    st.caption("The advisor gives generalised guidance. Always refer to your site SOPs and regulatory filings.")
