from __future__ import annotations

import threading
from typing import Callable, Optional
from urllib.parse import urlparse, urlunparse

from littleagent.config import get_settings, reset_settings_cache
from littleagent.logging import get_logger
from littleagent.service.agent import AgentOrchestrator
from littleagent.service.auth import AuthService
from littleagent.service.crypto import KeyDecryptionError, KeyVault
from littleagent.service.errors import InvalidCredentialsError, MissingCredentialsError
from littleagent.service.model_backend import ModelBackend, OpenAIChatBackend
from littleagent.service.tools import ToolRegistry
from littleagent.service.website import WebsiteFetcher
from littleagent.service.workspace import WorkspaceResolver, WorkspaceScope
from littleagent.storage.memory import MemoryStore
from littleagent.storage.postgres import PostgresStore

logger = get_logger(__name__)

BackendFactory = Callable[[str], ModelBackend]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in a DSN with ``***`` for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info(
                "runtime_store_initialized",
                store_type="memory" if self.settings.use_memory_store else "postgres",
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
            )
            raise

        self.auth = AuthService(self.store, self.settings)
        self.resolver = WorkspaceResolver(self.store)
        self.key_vault = KeyVault(self.settings.encryption_key)
        self.website_fetcher = WebsiteFetcher(
            timeout=self.settings.website_fetch_timeout,
            max_chars=self.settings.website_fetch_max_chars,
        )
        # Swapped out by tests for a scripted backend
        self.backend_factory: BackendFactory = self._openai_backend

    def _openai_backend(self, api_key: str) -> ModelBackend:
        return OpenAIChatBackend(
            api_key,
            self.settings.model_name,
            base_url=self.settings.model_base_url,
            max_output_tokens=self.settings.agent_max_output_tokens,
            temperature=self.settings.agent_temperature,
        )

    def build_model_backend(self, workspace_id: str) -> ModelBackend:
        """Decrypt the workspace's stored key and build a backend for it."""
        profile = self.store.get_creator_profile(workspace_id)
        token = profile.encrypted_model_key if profile else None
        if not token:
            raise MissingCredentialsError()
        try:
            api_key = self.key_vault.decrypt(token)
        except KeyDecryptionError as exc:
            logger.warning("model_key_unusable", workspace_id=workspace_id)
            raise InvalidCredentialsError() from exc
        return self.backend_factory(api_key)

    def build_registry(self, scope: WorkspaceScope) -> ToolRegistry:
        return ToolRegistry(
            self.store,
            scope.workspace_id,
            user_id=scope.user_id,
            website_fetcher=self.website_fetcher,
        )

    def build_orchestrator(self, scope: WorkspaceScope) -> AgentOrchestrator:
        return AgentOrchestrator(
            self.build_model_backend(scope.workspace_id),
            self.build_registry(scope),
            max_tool_rounds=self.settings.agent_max_tool_rounds,
        )

    def close(self) -> None:
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton using double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        if runtime is not None:
            runtime.close()
        runtime = Runtime()
        return runtime
