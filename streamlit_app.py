"""Prompt Enhancer - Streamlit demo page."""

import os
import uuid
import streamlit as st

from app import create_application
from config.settings import Settings
from errors import EnhancerError, QuotaExceeded
from schemas.enhance import EnhanceRequest
from schemas.identity import RequestIdentity
from schemas.session import ChatTurn


st.set_page_config(
    page_title="Prompt Enhancer",
    page_icon="✨",
    layout="wide"
)

# Initialize session state
if "anon_id" not in st.session_state:
    st.session_state.anon_id = uuid.uuid4().hex

if "session_id" not in st.session_state:
    st.session_state.session_id = None

if "messages" not in st.session_state:
    st.session_state.messages = []

if "app" not in st.session_state:
    st.session_state.app = None


def reset_conversation():
    """Start a new session on the next prompt."""
    st.session_state.session_id = None
    st.session_state.messages = []


def get_app(settings: Settings):
    """Get or create the application instance."""
    if st.session_state.app is None:
        st.session_state.app = create_application(settings)
        st.session_state.app.worker.start()
    return st.session_state.app


# Sidebar configuration
st.sidebar.header("Configuration")

llm_provider = st.sidebar.selectbox(
    "LLM Provider",
    options=["openai", "anthropic"],
    index=0,
    help="Select which LLM rewrites the prompts"
)

openai_api_key = st.sidebar.text_input(
    "OpenAI API Key",
    value=os.environ.get("OPENAI_API_KEY", ""),
    type="password",
    help="Required for OpenAI provider"
)

anthropic_api_key = st.sidebar.text_input(
    "Anthropic API Key",
    value=os.environ.get("ANTHROPIC_API_KEY", ""),
    type="password",
    help="Required for Anthropic provider"
)

st.sidebar.markdown("---")

user_id = st.sidebar.text_input(
    "Signed-in user id",
    value="",
    help="Leave empty to use the anonymous quota"
)

with st.sidebar.expander("Advanced Settings"):
    db_path = st.text_input("Database path", value="data/enhancer.db")
    queue_backend = st.selectbox(
        "Synopsis queue",
        options=["stub", "redis"],
        index=0,
        help="stub runs the synopsis worker inside this page; redis needs a running server"
    )
    use_history = st.checkbox(
        "Use history for follow-ups",
        value=True,
        help="Feed the session synopsis and recent turns into follow-up prompts"
    )
    show_debug = st.checkbox("Show debug info", value=False)

if st.sidebar.button("Start New Session", type="secondary"):
    reset_conversation()
    st.rerun()

st.sidebar.markdown("---")
st.sidebar.caption(f"Anonymous ID: {st.session_state.anon_id[:8]}...")
if st.session_state.session_id:
    st.sidebar.caption(f"Session ID: {st.session_state.session_id[:8]}...")

# Main content
st.title("Prompt Enhancer")
st.markdown("Rewrite prompts into clear, complete instructions")

for message in st.session_state.messages:
    with st.chat_message(message["role"]):
        st.markdown(message["content"])

if prompt := st.chat_input("Type a prompt to enhance..."):
    with st.chat_message("user"):
        st.markdown(prompt)

    with st.chat_message("assistant"):
        with st.spinner("Enhancing..."):
            try:
                settings = Settings(
                    llm_provider=llm_provider,
                    openai_api_key=openai_api_key if openai_api_key else None,
                    anthropic_api_key=anthropic_api_key if anthropic_api_key else None,
                    db_path=db_path,
                    queue_backend=queue_backend,
                    verbose=show_debug,
                )
                app = get_app(settings)
                identity = RequestIdentity(
                    anon_id=st.session_state.anon_id,
                    user_id=user_id or None,
                    client_ip="streamlit",
                )

                request = EnhanceRequest(
                    prompt=prompt,
                    session_id=st.session_state.session_id,
                    use_history=use_history,
                    last_messages=[ChatTurn(**m) for m in st.session_state.messages],
                    auto_create_session=st.session_state.session_id is None,
                )
                response = app.orchestrator.enhance(request, identity)
                st.session_state.session_id = response.session_id

                st.markdown(response.enhanced_prompt)
                st.caption(f"{response.quota_remaining} enhancements left today")

                if show_debug:
                    st.info(
                        f"History used: {response.use_history} "
                        f"(turns={response.context_used.last_turns}, "
                        f"synopsis chars={response.context_used.synopsis_chars})"
                    )
                    st.info(f"Tokens: in={response.tokens.input}, out={response.tokens.output}")
                    st.info(f"Latency: {response.latency_ms} ms")

                st.session_state.messages.append({"role": "user", "content": prompt})
                st.session_state.messages.append(
                    {"role": "assistant", "content": response.enhanced_prompt}
                )

            except QuotaExceeded as e:
                st.warning(f"{e} Try again {e.retry_after}.")
            except (EnhancerError, ValueError) as e:
                st.error(f"Error enhancing prompt: {e}")
                if show_debug:
                    import traceback
                    st.code(traceback.format_exc())

if not st.session_state.messages:
    st.markdown("""
    ### Welcome!

    Type a rough prompt and get back a clearer version with the task, the
    subject and the expected output spelled out.

    **Try:**
    - "write a blog post about remote work"
    - then a follow-up such as "Can you make it shorter?"

    **Tips:**
    - Follow-ups reuse the session synopsis when history is enabled
    - Anonymous visitors get 10 enhancements a day; signed-in users get 20
    """)

st.sidebar.markdown("---")
st.sidebar.markdown("Built with Streamlit")
