"""
Environment configuration for the bridge and runtime webhook services.

Both services read their settings from environment variables. A local
``.env`` file is loaded first (python-dotenv, never overriding variables that
are already set), so development setups only need to fill in that file.

Bridge service
--------------
WECHAT_APPID                 Official Account AppID (required).
WECHAT_APPSECRET             Official Account AppSecret (required).
WECHAT_TOKEN                 Server verification token (required).
WECHAT_ENCODING_AES_KEY      Message encryption key (optional, plaintext mode only).
BRIDGE_BASE_URL              Public URL of this bridge, used for callback URLs (required).
SUPABASE_URL                 Supabase project URL (required).
SUPABASE_SERVICE_KEY         Supabase service-role key (required).
REDIS_URL                    Token cache / lock store (default: redis://localhost:6379).
HOST, PORT                   Listen address (default: 0.0.0.0:3000).
DISPATCH_TIMEOUT_SECONDS     Runtime handshake timeout (default: 10).
WECHAT_MAX_MESSAGE_LENGTH    Customer service message ceiling (default: 600).

Runtime webhook service
-----------------------
RUNTIME_HOST, RUNTIME_PORT         Listen address (default: 0.0.0.0:8765).
RUNTIME_AUTH_TOKEN                 Bearer token expected on /webhook. Empty or
                                   "$auto:..." means auto-generate and persist.
RUNTIME_TASK_TIMEOUT_SECONDS       Agent invocation timeout (default: 300).
RUNTIME_CALLBACK_TIMEOUT_SECONDS   Callback POST timeout (default: 30).
RUNTIME_AGENT                      "anthropic" or a "module:attribute" path.
RUNTIME_DATA_DIR                   Where the generated auth token is kept.
ANTHROPIC_MODEL                    Model used by the built-in agent.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_AUTO_TOKEN_PREFIX = "$auto:"
_GENERATED_TOKEN_PREFIX = "wh_"
_TOKEN_FILENAME = ".auth-token"


class Settings(BaseModel):
    """Bridge service settings."""

    wechat_app_id: str
    wechat_app_secret: str
    wechat_token: str
    wechat_encoding_aes_key: Optional[str] = None

    bridge_base_url: str

    supabase_url: str
    supabase_service_key: str
    redis_url: str = "redis://localhost:6379"

    host: str = "0.0.0.0"
    port: int = 3000

    dispatch_timeout_seconds: float = 10.0
    # Room for a "(nn/nn) " prefix plus text in every chunk
    max_message_length: int = Field(default=600, ge=20)


class RuntimeSettings(BaseModel):
    """Runtime webhook service settings."""

    host: str = "0.0.0.0"
    port: int = 8765
    auth_token: str = ""
    task_timeout_seconds: float = 300.0
    callback_timeout_seconds: float = 30.0
    agent: str = "anthropic"
    data_dir: Path = Path.home() / ".wxrelay" / "webhook-server"
    anthropic_model: Optional[str] = None


def _require_env(key: str) -> str:
    value = os.getenv(key, "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {key}")
    return value


def load_settings() -> Settings:
    """
    Build bridge Settings from the environment.

    Raises:
        ValueError: if any required variable is missing or empty.
    """
    load_dotenv()

    return Settings(
        wechat_app_id=_require_env("WECHAT_APPID"),
        wechat_app_secret=_require_env("WECHAT_APPSECRET"),
        wechat_token=_require_env("WECHAT_TOKEN"),
        wechat_encoding_aes_key=os.getenv("WECHAT_ENCODING_AES_KEY") or None,
        bridge_base_url=_require_env("BRIDGE_BASE_URL").rstrip("/"),
        supabase_url=_require_env("SUPABASE_URL"),
        supabase_service_key=_require_env("SUPABASE_SERVICE_KEY"),
        redis_url=os.getenv("REDIS_URL") or "redis://localhost:6379",
        host=os.getenv("HOST") or "0.0.0.0",
        port=int(os.getenv("PORT") or "3000"),
        dispatch_timeout_seconds=float(os.getenv("DISPATCH_TIMEOUT_SECONDS") or "10"),
        max_message_length=int(os.getenv("WECHAT_MAX_MESSAGE_LENGTH") or "600"),
    )


def load_runtime_settings() -> RuntimeSettings:
    """
    Build RuntimeSettings from the environment.

    The auth token is resolved here, so the returned settings always carry
    the token the /webhook endpoint will enforce.
    """
    load_dotenv()

    data_dir_env = os.getenv("RUNTIME_DATA_DIR", "").strip()
    data_dir = Path(data_dir_env).expanduser() if data_dir_env else RuntimeSettings().data_dir

    return RuntimeSettings(
        host=os.getenv("RUNTIME_HOST") or "0.0.0.0",
        port=int(os.getenv("RUNTIME_PORT") or "8765"),
        auth_token=resolve_auth_token(os.getenv("RUNTIME_AUTH_TOKEN", ""), data_dir),
        task_timeout_seconds=float(os.getenv("RUNTIME_TASK_TIMEOUT_SECONDS") or "300"),
        callback_timeout_seconds=float(os.getenv("RUNTIME_CALLBACK_TIMEOUT_SECONDS") or "30"),
        agent=os.getenv("RUNTIME_AGENT") or "anthropic",
        data_dir=data_dir,
        anthropic_model=os.getenv("ANTHROPIC_MODEL") or None,
    )


# ---------------------------------------------------------------------------
# Runtime auth token persistence
# ---------------------------------------------------------------------------

def generate_auth_token() -> str:
    """Return a fresh ``wh_``-prefixed random token."""
    return f"{_GENERATED_TOKEN_PREFIX}{uuid.uuid4().hex}"


def load_persisted_token(data_dir: Path) -> Optional[str]:
    """Read a previously generated token, or None if absent or malformed."""
    token_path = data_dir / _TOKEN_FILENAME
    try:
        token = token_path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if token.startswith(_GENERATED_TOKEN_PREFIX):
        return token
    return None


def save_persisted_token(token: str, data_dir: Path) -> None:
    """Write the token with owner-only permissions. Failures are logged, not raised."""
    token_path = data_dir / _TOKEN_FILENAME
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        token_path.write_text(token, encoding="utf-8")
        token_path.chmod(0o600)
        logger.info(f"Runtime auth token saved to: {token_path}")
    except OSError as e:
        logger.warning(f"Failed to save runtime auth token: {e}")


def resolve_auth_token(configured: str, data_dir: Path) -> str:
    """
    Return the bearer token the runtime webhook must enforce.

    An explicit token is used as-is. An empty value or an ``$auto:``
    placeholder loads the persisted token, generating and persisting a new
    one on first start so restarts keep the same token.
    """
    configured = (configured or "").strip()
    if configured and not configured.startswith(_AUTO_TOKEN_PREFIX):
        return configured

    persisted = load_persisted_token(data_dir)
    if persisted:
        logger.info(f"Loaded persisted runtime auth token: {persisted[:12]}...")
        return persisted

    token = generate_auth_token()
    save_persisted_token(token, data_dir)
    logger.info(f"Generated new runtime auth token: {token}")
    return token
