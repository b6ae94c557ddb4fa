"""
Pytest configuration for token_engine. Point storage and lock files at a temp dir
so tests never touch the real per-user token database or the shared lock dir.
"""
import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="token_engine_tests_")
os.environ["TOKEN_ENGINE_STORAGE_DIR"] = os.path.join(_tmp, "storage")
os.environ["TOKEN_ENGINE_LOCK_DIR"] = os.path.join(_tmp, "locks")
for _var in ("TOKEN_ENGINE_CLIENT_ID", "TOKEN_ENGINE_AUDIENCE", "TOKEN_ENGINE_DOMAIN", "TOKEN_ENGINE_IS_SILENT"):
    os.environ.pop(_var, None)
