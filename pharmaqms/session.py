# pharmaqms/session.py

"""Streamlit session wiring: secrets, configuration, the engine and the AI service."""

import logging
from typing import Optional

import streamlit as st

from .ai_services import AIService
from .auth import PasswordVerifier, User
from .config import AppConfig, configure_logging, load_config
from .engine import QMSEngine
from .errors import CollaboratorUnavailable
from .storage import FileStore, KeyValueStore, SessionStateStore

logger = logging.getLogger(__name__)

DEFAULT_APP_PASSWORD = "admin"


def _secret(name: str) -> Optional[str]:
    try:
        return st.secrets.get(name)
    except FileNotFoundError:
        # no secrets.toml at all
        return None


def init_session_state():
    """Initialize all session state variables."""
    defaults = {
        "logged_in": False,
        "user": None,
        "api_key": None,
        "pending_signature": None,
        "components_initialized": False,
    }

    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value

    _load_api_keys()


def _load_api_keys():
    """GOOGLE_API_KEY first, then the generic API_KEY."""
    google_key = _secret("GOOGLE_API_KEY") or _secret("API_KEY")
    if google_key:
        st.session_state.api_key = google_key


def get_config() -> AppConfig:
    if "config" not in st.session_state:
        st.session_state.config = load_config()
        configure_logging(st.session_state.config.log_level)
    return st.session_state.config


def _make_store(config: AppConfig) -> KeyValueStore:
    if config.storage.backend == "session":
        return SessionStateStore(st.session_state.setdefault("qms_store", {}))
    return FileStore(config.storage.directory)


def login_verifier() -> PasswordVerifier:
    return PasswordVerifier(default_password=_secret("APP_PASSWORD") or DEFAULT_APP_PASSWORD)


def signature_verifier() -> PasswordVerifier:
    password = _secret("SIGNATURE_PASSWORD") or _secret("APP_PASSWORD") or DEFAULT_APP_PASSWORD
    return PasswordVerifier(default_password=password)


def get_engine() -> QMSEngine:
    if not st.session_state.get("components_initialized") or "engine" not in st.session_state:
        config = get_config()
        st.session_state.engine = QMSEngine(_make_store(config), signature_verifier(), config)
        st.session_state.components_initialized = True
    return st.session_state.engine


def get_ai_service() -> Optional[AIService]:
    config = get_config()
    if not config.ai.enabled:
        return None
    if "ai_service" not in st.session_state and st.session_state.get("api_key"):
        try:
            st.session_state.ai_service = AIService(st.session_state.api_key, model=config.ai.model)
        except CollaboratorUnavailable as e:
            logger.warning(f"AI service not initialised: {e}")
            return None
    return st.session_state.get("ai_service")


def login(username: str, password: str) -> Optional[User]:
    engine = get_engine()
    user = engine.users.get(username.strip())
    if user is None or not login_verifier()(user, password):
        return None
    st.session_state.logged_in = True
    st.session_state.user = user
    logger.info(f"{user.username} signed in")
    return user


def logout():
    for key in ("user", "pending_signature"):
        st.session_state[key] = None
    st.session_state.logged_in = False


def current_user() -> Optional[User]:
    return st.session_state.get("user")
