"""
Token engine configuration. Defaults here; deployment values come from env.
No client credentials in this file; build an EngineConfig and inject it.
"""
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

# Identity provider host; trailing slashes stripped so URLs can be joined with "/"
DOMAIN = os.environ.get("TOKEN_ENGINE_DOMAIN", "").strip().rstrip("/") or "id.sage.com"

# Standard OpenID scopes. Must include email so accounts can migrate between providers.
SCOPE = "openid token access_token offline_access email"

# Wall-clock bound on the whole acquisition retry loop (3 minutes)
LOGON_TIMEOUT_SECONDS = 180.0

# Access tokens this close to expiry are renewed instead of served from cache
ACCESS_TOKEN_EXPIRY_BUFFER = 60

# Loopback port the interactive flow listens on for the provider redirect
REDIRECT_PORT = int(os.environ.get("TOKEN_ENGINE_REDIRECT_PORT", "8765"))

# Durable refresh-token store lives in a per-user directory
STORAGE_DIR = os.environ.get(
    "TOKEN_ENGINE_STORAGE_DIR",
    str(Path.home() / ".local" / "share" / "token_engine"),
)

# Lock files must be visible to every local user, so they default to the shared temp dir
LOCK_DIR = os.environ.get("TOKEN_ENGINE_LOCK_DIR", tempfile.gettempdir())
LOCK_NAME = os.environ.get("TOKEN_ENGINE_LOCK_NAME", "token_engine.client.lock")


def _env_bool(key: str, default: bool = False) -> bool:
    raw = os.environ.get(key, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes")


def normalize_domain(domain: str | None) -> str:
    """Fall back to the default provider host and drop trailing slashes."""
    value = (domain or "").strip().rstrip("/")
    return value or DOMAIN


@dataclass(frozen=True)
class EngineConfig:
    """
    Identity and environment for one engine instance. Immutable once built.

    is_silent controls the first logon of the app: False prompts every time
    logon() is called; True prompts only when the refresh token is no longer usable.
    """

    client_id: str
    audience: str
    domain: str = DOMAIN
    is_silent: bool = False
    partition: str = ""
    storage_dir: str = STORAGE_DIR
    lock_dir: str = LOCK_DIR
    lock_name: str = LOCK_NAME
    redirect_port: int = REDIRECT_PORT
    timeout_seconds: float = LOGON_TIMEOUT_SECONDS

    def __post_init__(self):
        object.__setattr__(self, "domain", normalize_domain(self.domain))

    @property
    def scope(self) -> str:
        return SCOPE

    @property
    def issuer(self) -> str:
        """Provider base URL. A bare host means https."""
        if self.domain.startswith(("http://", "https://")):
            return self.domain
        return f"https://{self.domain}"

    @property
    def database_url(self) -> str:
        return f"sqlite:///{Path(self.storage_dir) / 'refresh_tokens.db'}"

    @property
    def redirect_uri(self) -> str:
        return f"http://127.0.0.1:{self.redirect_port}/callback"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build from TOKEN_ENGINE_* variables (read at call time, not import time)."""
        return cls(
            client_id=os.environ.get("TOKEN_ENGINE_CLIENT_ID", "").strip(),
            audience=os.environ.get("TOKEN_ENGINE_AUDIENCE", "").strip(),
            domain=os.environ.get("TOKEN_ENGINE_DOMAIN", ""),
            is_silent=_env_bool("TOKEN_ENGINE_IS_SILENT"),
            partition=os.environ.get("TOKEN_ENGINE_PARTITION", ""),
            storage_dir=os.environ.get("TOKEN_ENGINE_STORAGE_DIR", STORAGE_DIR),
            lock_dir=os.environ.get("TOKEN_ENGINE_LOCK_DIR", LOCK_DIR),
            lock_name=os.environ.get("TOKEN_ENGINE_LOCK_NAME", LOCK_NAME),
            redirect_port=int(os.environ.get("TOKEN_ENGINE_REDIRECT_PORT", str(REDIRECT_PORT))),
        )
