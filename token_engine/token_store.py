"""
Token caches keyed by (client_id, scope, audience, partition).

MemoryTokenStore holds access tokens for the life of the process.
DurableTokenStore holds refresh tokens in SQLite, shared by every local process
of the same user; callers must hold the ProcessLock around its reads and writes.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import NamedTuple, Protocol

from sqlalchemy.orm import Session, sessionmaker

from token_engine.database import create_schema, create_session_factory, create_store_engine
from token_engine.models import RefreshTokenRecord

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    client_id: str
    scope: str
    audience: str
    partition: str = ""

    def describe(self) -> str:
        return f"client_id={self.client_id} audience={self.audience} partition={self.partition!r}"


@dataclass
class StoredToken:
    value: str = field(repr=False)
    expires_in: int = 0
    issued_at: float = field(default_factory=time.time)

    def expired_or_soon(self, buffer_seconds: int = 60) -> bool:
        """
        True if the token is expired or within buffer_seconds of expiry.
        When lifetime is shorter than buffer_seconds, only True once actually expired.
        expires_in <= 0 means the provider gave no lifetime: never expired locally.
        """
        if self.expires_in <= 0:
            return False
        elapsed = time.time() - self.issued_at
        if elapsed >= self.expires_in:
            return True
        if self.expires_in > buffer_seconds and elapsed >= (self.expires_in - buffer_seconds):
            return True
        return False


class TokenStore(Protocol):
    def get(self, key: CacheKey) -> StoredToken | None: ...

    def put(self, key: CacheKey, token: StoredToken) -> None: ...


class MemoryTokenStore:
    """Volatile access-token cache. Process-local; mutated only by its engine."""

    def __init__(self):
        self._tokens: dict[CacheKey, StoredToken] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> StoredToken | None:
        with self._lock:
            return self._tokens.get(key)

    def put(self, key: CacheKey, token: StoredToken) -> None:
        with self._lock:
            self._tokens[key] = token


class DurableTokenStore:
    """
    Refresh-token cache that survives process restart.
    Tables are created on first use, which the engine only reaches while holding the ProcessLock.
    """

    def __init__(self, url: str | None = None, session_factory: sessionmaker | None = None):
        if session_factory is None:
            if url is None:
                raise ValueError("DurableTokenStore needs a database url or a session factory")
            session_factory = create_session_factory(create_store_engine(url))
        self._sessions = session_factory
        self._schema_ready = False

    def _session(self) -> Session:
        db = self._sessions()
        if not self._schema_ready:
            try:
                create_schema(db.get_bind())
            except Exception:
                db.close()
                raise
            self._schema_ready = True
        return db

    def _find(self, db, key: CacheKey) -> RefreshTokenRecord | None:
        return (
            db.query(RefreshTokenRecord)
            .filter(
                RefreshTokenRecord.client_id == key.client_id,
                RefreshTokenRecord.scope == key.scope,
                RefreshTokenRecord.audience == key.audience,
                RefreshTokenRecord.partition == key.partition,
            )
            .first()
        )

    def get(self, key: CacheKey) -> StoredToken | None:
        db = self._session()
        try:
            row = self._find(db, key)
            if row is None:
                return None
            return StoredToken(value=row.token, expires_in=row.expires_in, issued_at=row.issued_at)
        finally:
            db.close()

    def put(self, key: CacheKey, token: StoredToken) -> None:
        db = self._session()
        try:
            row = self._find(db, key)
            if row is None:
                db.add(
                    RefreshTokenRecord(
                        client_id=key.client_id,
                        scope=key.scope,
                        audience=key.audience,
                        partition=key.partition,
                        token=token.value,
                        expires_in=token.expires_in,
                        issued_at=token.issued_at,
                    )
                )
            else:
                row.token = token.value
                row.expires_in = token.expires_in
                row.issued_at = token.issued_at
            db.commit()
            logger.debug("Stored refresh token for %s", key.describe())
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
