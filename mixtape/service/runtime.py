from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from mixtape.config import Settings, get_settings, reset_settings_cache
from mixtape.logging import get_logger
from mixtape.service.auth import AuthService
from mixtape.service.identity import IdentityReconciler
from mixtape.service.oauth import OAuthClient
from mixtape.service.passwords import PasswordHasher
from mixtape.service.session import SessionBoundary
from mixtape.service.tokens import TokenIssuer
from mixtape.service.users import UserDirectory
from mixtape.storage.memory import MemoryStore
from mixtape.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a DSN for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info("runtime_init_started", store_type=store_type)

        try:
            self.store = (
                MemoryStore(fs_root=self.settings.memory_state_dir)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.hasher = PasswordHasher.from_settings(self.settings)
        self.tokens = TokenIssuer.from_settings(self.settings)
        self.sessions = SessionBoundary(self.tokens)
        self.oauth = OAuthClient(self.settings)
        self.reconciler = IdentityReconciler(
            self.store, max_username_attempts=self.settings.username_synthesis_attempts
        )
        self.auth = AuthService(
            self.store, self.hasher, self.tokens, self.reconciler, self.oauth
        )
        self.users = UserDirectory(self.store)

    def close(self) -> None:
        self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from a fresh read of the environment."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        runtime = Runtime()
        return runtime
