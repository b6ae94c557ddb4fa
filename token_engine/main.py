"""
Local token service. GET /token returns a bearer token for the configured identity,
signing the user in through the browser when needed. Port 8000, loopback only.
"""
import logging

from fastapi import FastAPI, HTTPException

from token_engine.config import EngineConfig
from token_engine.engine import TokenAcquisitionEngine, build_engine
from token_engine.errors import CancelledError, ConfigurationError, TransientAuthError

logger = logging.getLogger(__name__)


def create_app(engine: TokenAcquisitionEngine | None = None) -> FastAPI:
    """Build the service around engine (defaults to one wired from TOKEN_ENGINE_* env)."""
    if engine is None:
        engine = build_engine(EngineConfig.from_env())

    app = FastAPI(title="Token Engine", version="0.1.0")
    app.state.engine = engine

    async def _run(operation):
        try:
            return await operation()
        except ConfigurationError as e:
            raise HTTPException(
                status_code=500,
                detail={"error": "configuration_error", "error_description": str(e)},
            )
        except CancelledError as e:
            raise HTTPException(
                status_code=409,
                detail={"error": "cancelled", "error_description": str(e)},
            )
        except TransientAuthError as e:
            logger.warning("Token request failed: %s", e)
            raise HTTPException(
                status_code=502,
                detail={"error": "authentication_failed", "error_description": str(e)},
            )

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "token_engine"}

    @app.get("/token")
    async def token():
        """Valid access token; prompts only when silent renewal is impossible."""
        access_token = await _run(engine.get_token)
        return {"token_type": "Bearer", "access_token": access_token}

    @app.post("/logon")
    async def logon():
        """Explicit logon; forces the prompt unless the identity is configured as silent."""
        await _run(engine.logon)
        return {"status": "ok"}

    @app.post("/logoff")
    async def logoff():
        await engine.logoff()
        return {"status": "ok"}

    @app.post("/cancel")
    async def cancel():
        """Abort an interactive sign-in that is waiting on the browser."""
        engine.cancel()
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "token_engine.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
    )
