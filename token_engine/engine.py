"""
Token acquisition engine: one "give me a valid token" call over a volatile access-token
cache, a durable refresh-token cache, a silent refresh, and an interactive fallback.

Every attempt holds the ProcessLock for its whole duration, interactive UI included,
because the durable store must not be touched by two processes at once.
"""
import asyncio
import logging
import time
from typing import Callable

from token_engine.authorizer import (
    AuthorizationSession,
    InteractiveAuthorizer,
    LoopbackAuthorizer,
    NavigationStatus,
)
from token_engine.config import ACCESS_TOKEN_EXPIRY_BUFFER, EngineConfig
from token_engine.errors import (
    CancelledError,
    ConfigurationError,
    FaultKind,
    TransientAuthError,
    classify,
)
from token_engine.oauth_client import AuthorizationOptions, HttpOAuthClient, OAuthClient, TokenResponse
from token_engine.process_lock import ProcessLock
from token_engine.token_store import CacheKey, DurableTokenStore, MemoryTokenStore, StoredToken, TokenStore

logger = logging.getLogger(__name__)

# Pause between failed attempts so a dead network is not hammered for the whole deadline
RETRY_DELAY_SECONDS = 1.0

# The provider gives the user this long to finish signing in before the attempt is cancelled
INTERACTIVE_TIMEOUT_SECONDS = 300.0


class TokenAcquisitionEngine:
    """
    Callers get a token or one of ConfigurationError, CancelledError, TransientAuthError.
    Cancelling the task that awaits acquire() still raises asyncio.CancelledError.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        oauth_client: OAuthClient,
        authorizer_factory: Callable[[], InteractiveAuthorizer],
        access_tokens: TokenStore,
        refresh_tokens: TokenStore,
        lock: ProcessLock,
        clock: Callable[[], float] = time.monotonic,
        retry_delay: float = RETRY_DELAY_SECONDS,
        interactive_timeout: float | None = INTERACTIVE_TIMEOUT_SECONDS,
    ):
        self.config = config
        self._oauth = oauth_client
        self._authorizer_factory = authorizer_factory
        self._access_tokens = access_tokens
        self._refresh_tokens = refresh_tokens
        self._lock = lock
        self._clock = clock
        self._retry_delay = retry_delay
        self._interactive_timeout = interactive_timeout
        self._session: AuthorizationSession | None = None

    @property
    def cache_key(self) -> CacheKey:
        return CacheKey(
            client_id=self.config.client_id,
            scope=self.config.scope,
            audience=self.config.audience,
            partition=self.config.partition,
        )

    async def get_token(self) -> str:
        """
        Return a valid access token. Call this before every API request: an expired
        access token is silently renewed with the refresh token, and the user is only
        prompted when that is no longer possible.
        """
        return await self.acquire(False)

    async def logon(self) -> None:
        """Called at client startup. Prompts unless the config opted into silent-first logon."""
        await self.acquire(not self.config.is_silent)

    async def logoff(self) -> None:
        """Called at client shutdown. There is no local session state to clear."""

    def cancel(self) -> None:
        """Cancel the interactive authorization in progress, if any."""
        if self._session is not None:
            self._session.cancel()

    async def acquire(self, reset_duration: bool) -> str:
        """
        reset_duration=True skips the silent path and forces a fresh interactive prompt.
        Raises ConfigurationError, CancelledError or TransientAuthError.
        """
        if not self.config.client_id or not self.config.audience:
            raise ConfigurationError("Must provide client_id and audience")

        async with self._lock:
            token = await self._acquire_with_retry(reset_duration)
        return token.value

    async def _acquire_with_retry(self, reset_duration: bool) -> StoredToken:
        started = self._clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                token = None
                if not reset_duration:
                    token = await self.get_token_silently()
                if token is None:
                    options = AuthorizationOptions(force_interactive=reset_duration)
                    token = await self.get_token_with_prompt(options)
                return token
            except asyncio.CancelledError as exc:
                # A collaborator signalled cancellation; cancellation of this task itself propagates
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
                fault = classify(exc)
                logger.info("Token acquisition cancelled on attempt %d", attempt)
                raise CancelledError("Authentication was cancelled") from fault.cause
            except Exception as exc:
                fault = classify(exc)
                if fault.kind is FaultKind.CANCELLED:
                    logger.info("Token acquisition cancelled on attempt %d", attempt)
                    raise CancelledError("Authentication was cancelled") from fault.cause
                if fault.kind is FaultKind.CONFIGURATION:
                    raise ConfigurationError(fault.message) from fault.cause

                elapsed = self._clock() - started
                if elapsed > self.config.timeout_seconds:
                    logger.error(
                        "Token acquisition failed after %d attempts in %.0fs: %s",
                        attempt,
                        elapsed,
                        fault.message,
                    )
                    raise TransientAuthError(fault.message) from fault.cause
                logger.warning("Token acquisition attempt %d failed, retrying: %s", attempt, fault.message)

            if self._retry_delay > 0:
                remaining = self.config.timeout_seconds - (self._clock() - started)
                await asyncio.sleep(max(0.0, min(self._retry_delay, remaining)))

    async def get_token_silently(self) -> StoredToken | None:
        """Volatile cache, then refresh token. None means the caller must prompt."""
        key = self.cache_key
        cached = self._access_tokens.get(key)
        if cached is not None and not cached.expired_or_soon(ACCESS_TOKEN_EXPIRY_BUFFER):
            logger.debug("Access token served from cache for %s", key.describe())
            return cached

        refresh = self._refresh_tokens.get(key)
        if refresh is None or refresh.expired_or_soon(0):
            logger.debug("No usable refresh token for %s", key.describe())
            return None

        logger.info("Refreshing access token for %s", key.describe())
        response = await self._oauth.refresh(refresh.value, key)
        return self._store_response(key, response)

    async def get_token_with_prompt(self, options: AuthorizationOptions) -> StoredToken:
        """Browser sign-in in a fresh cancellable session; session and authorizer released on every exit."""
        key = self.cache_key
        logger.info("Starting interactive authorization for %s (force=%s)", key.describe(), options.force_interactive)
        async with AuthorizationSession(timeout=self._interactive_timeout) as session:
            self._session = session
            try:
                async with self._authorizer_factory() as authorizer:
                    start = await self._oauth.begin_authorization(self.config.audience, options)
                    result = await authorizer.navigate(start.start_url, session.cancel_event)
                    if result.status is NavigationStatus.CANCELLED:
                        raise CancelledError("Interactive authorization was cancelled")
                    response = await self._oauth.end_authorization(start, result.redirect_url, key)
            finally:
                self._session = None
        return self._store_response(key, response)

    def _store_response(self, key: CacheKey, response: TokenResponse) -> StoredToken:
        access = StoredToken(value=response.access_token, expires_in=response.expires_in)
        self._access_tokens.put(key, access)
        if response.refresh_token:
            self._refresh_tokens.put(
                key,
                StoredToken(value=response.refresh_token, expires_in=response.refresh_expires_in),
            )
        return access

    def get_token_sync(self) -> str:
        """Blocking get_token() for callers without an event loop."""
        return asyncio.run(self.get_token())

    def logon_sync(self) -> None:
        asyncio.run(self.logon())


def build_engine(config: EngineConfig) -> TokenAcquisitionEngine:
    """Wire the default collaborators for config. Nothing here is global or cached."""
    return TokenAcquisitionEngine(
        config,
        oauth_client=HttpOAuthClient(
            issuer=config.issuer,
            client_id=config.client_id,
            scope=config.scope,
            redirect_uri=config.redirect_uri,
        ),
        authorizer_factory=lambda: LoopbackAuthorizer(config.redirect_port),
        access_tokens=MemoryTokenStore(),
        refresh_tokens=DurableTokenStore(config.database_url),
        lock=ProcessLock(config.lock_name, config.lock_dir),
    )
