"""Single-call access to the generative backend.

This module provides:
- BackendHandle: per-caller credentials bound to LiteLLM's ``acompletion``
- ClientRegistry: explicit cache of one handle per caller, with invalidation
  when the caller's credential changes
- ContentClient: one generation call with a hard deadline, returning raw text
  and translating provider errors into the ``generation.errors`` taxonomy

The model name is read from the runtime configuration record on every call so
operators can switch models without a redeploy.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings
from generation.errors import (
    GenerationError,
    GenerationTimeout,
    InvalidCredential,
    MissingCredential,
    QuotaExceeded,
    Unavailable,
)
from models.interfaces import CredentialStore, RuntimeConfigStore

logger = structlog.get_logger(__name__)

_INVALID_KEY_MARKERS = ("api key not valid", "api_key_invalid", "invalid api key")


@dataclass
class BackendHandle:
    """Backend access bound to one caller's API key.

    Attributes:
        caller_id: The caller this handle belongs to
        api_key: The caller's plaintext backend key
        created_at: Unix timestamp of handle creation
    """

    caller_id: str
    api_key: str = field(repr=False)
    created_at: float = field(default_factory=time.time)

    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        timeout: float,
    ) -> ModelResponse:
        """Issue one completion request with this caller's key."""
        return await acompletion(
            model=model,
            messages=messages,
            api_key=self.api_key,
            timeout=timeout,
        )


class ClientRegistry:
    """Process-lifetime cache of backend handles, keyed by caller id.

    Owned by the orchestrator's dependency context rather than a module
    global; credential updates go through ``update_credential`` so the
    cached handle is dropped in the same step.
    """

    def __init__(self, credentials: CredentialStore) -> None:
        self._credentials = credentials
        self._handles: dict[str, BackendHandle] = {}

    async def get(self, caller_id: str) -> BackendHandle:
        """Return the caller's cached handle, creating it on first use.

        Raises:
            MissingCredential: If the caller has no stored key.
        """
        handle = self._handles.get(caller_id)
        if handle is not None:
            return handle

        api_key = await self._credentials.get_api_key(caller_id)
        if not api_key:
            raise MissingCredential(f"Gemini API key not found for user {caller_id}")

        handle = BackendHandle(caller_id=caller_id, api_key=api_key)
        self._handles[caller_id] = handle
        logger.info("backend_handle_created", caller_id=caller_id)
        return handle

    def invalidate(self, caller_id: str) -> bool:
        """Drop a caller's cached handle. Returns True if one was cached."""
        removed = self._handles.pop(caller_id, None) is not None
        if removed:
            logger.info("backend_handle_invalidated", caller_id=caller_id)
        return removed

    async def update_credential(self, caller_id: str, api_key: str) -> None:
        """Persist a new key for the caller and invalidate its handle."""
        await self._credentials.set_api_key(caller_id, api_key)
        self.invalidate(caller_id)

    def clear(self) -> int:
        """Drop every cached handle. Returns how many were cached."""
        count = len(self._handles)
        self._handles.clear()
        logger.info("backend_handles_cleared", count=count)
        return count

    def __contains__(self, caller_id: object) -> bool:
        return caller_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)


def translate_backend_error(error: Exception) -> GenerationError:
    """Map a LiteLLM exception onto the generation error taxonomy.

    Order matters: LiteLLM's ``Timeout`` derives from its connection error.
    """
    message = str(error)
    lowered = message.lower()

    if isinstance(error, Timeout):
        return GenerationTimeout(f"Backend timed out: {message}")
    if isinstance(error, RateLimitError):
        return QuotaExceeded(f"Backend quota exceeded: {message}")
    if isinstance(error, (ServiceUnavailableError, InternalServerError, APIConnectionError)):
        return Unavailable(f"Backend unavailable: {message}")
    if isinstance(error, (AuthenticationError, PermissionDeniedError)):
        return InvalidCredential(f"Backend rejected the API key: {message}")
    if isinstance(error, BadRequestError):
        if any(marker in lowered for marker in _INVALID_KEY_MARKERS):
            return InvalidCredential(f"Backend rejected the API key: {message}")
        return GenerationError(f"Backend rejected the request: {message}")
    if "503" in message or "overloaded" in lowered:
        return Unavailable(f"Backend unavailable: {message}")
    if "429" in message:
        return QuotaExceeded(f"Backend quota exceeded: {message}")
    return GenerationError(f"Backend call failed: {message}")


class ContentClient:
    """Wraps a single call to the generative backend.

    Attributes:
        registry: Per-caller handle cache
        runtime_config: Store holding the mutable model record
        timeout_seconds: Deadline for one call
    """

    def __init__(
        self,
        registry: ClientRegistry,
        runtime_config: RuntimeConfigStore,
        timeout_seconds: float | None = None,
    ) -> None:
        self.registry = registry
        self.runtime_config = runtime_config
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else settings.generation_timeout_seconds
        )

    async def resolve_model(self) -> str:
        """Read the model name from the runtime configuration record.

        Bare names (``gemini-1.5-flash``) get the configured provider prefix
        so LiteLLM can route them.
        """
        value = await self.runtime_config.get_runtime_value(settings.model_config_key)
        if not value or not value.strip():
            return settings.default_model
        value = value.strip()
        if "/" not in value:
            return f"{settings.model_provider_prefix}/{value}"
        return value

    async def generate(
        self,
        caller_id: str,
        prompt: str,
        system_instruction: str | None = None,
    ) -> str:
        """Generate text for one prompt.

        Args:
            caller_id: Whose credential and quota to use
            prompt: The user prompt
            system_instruction: Optional system instruction

        Returns:
            The raw response text (possibly empty)

        Raises:
            Unavailable: Backend overloaded or rate limited
            QuotaExceeded: Caller quota exhausted
            GenerationTimeout: No response within ``timeout_seconds``
            InvalidCredential: Key missing or rejected
            GenerationError: Any other backend failure
        """
        handle = await self.registry.get(caller_id)
        model = await self.resolve_model()

        messages: list[dict[str, Any]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                handle.complete(model, messages, self.timeout_seconds),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            logger.warning(
                "generation_deadline_exceeded",
                caller_id=caller_id,
                model=model,
                timeout_seconds=self.timeout_seconds,
            )
            raise GenerationTimeout(
                f"No response within {self.timeout_seconds}s"
            ) from e
        except GenerationError:
            raise
        except Exception as e:
            translated = translate_backend_error(e)
            logger.warning(
                "generation_call_failed",
                caller_id=caller_id,
                model=model,
                error_type=type(translated).__name__,
                error=str(e),
            )
            if isinstance(translated, InvalidCredential):
                # A rejected key must not stay cached
                self.registry.invalidate(caller_id)
            raise translated from e

        latency_ms = int((time.time() - start_time) * 1000)
        content = response.choices[0].message.content or ""

        logger.info(
            "generation_call_complete",
            caller_id=caller_id,
            model=model,
            prompt_chars=len(prompt),
            response_chars=len(content),
            latency_ms=latency_ms,
        )
        return content
