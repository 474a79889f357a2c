"""Bounded retries with exponential backoff and prompt shrinking.

Overload responses from the backend are transient and shorter prompts are
more likely to get through, so each retry sends a compacted copy of the
request. Compaction only ever touches the outgoing request; generated task
text is stored exactly as returned.
"""

import asyncio
import re

import structlog

from config import settings
from generation.client import ContentClient
from generation.errors import Unavailable

logger = structlog.get_logger(__name__)

# `//` comments, but not the `//` of a URL scheme such as http://
_LINE_COMMENT = re.compile(r"([^:])//.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_WHITESPACE = re.compile(r"\s+")


def shrink_prompt(text: str) -> str:
    """Reduce a prompt's token count. Lossy.

    Strips ``//`` line comments (unless preceded by ``:``), ``/* */`` block
    comments, and collapses every whitespace run to a single space.

    Args:
        text: The prompt to compact

    Returns:
        The compacted prompt
    """
    if not text:
        return ""

    shrunk = _LINE_COMMENT.sub(r"\1", text)
    shrunk = _BLOCK_COMMENT.sub("", shrunk)
    shrunk = _WHITESPACE.sub(" ", shrunk)
    return shrunk.strip()


class RetryingClient:
    """ContentClient wrapper with retries, backoff and prompt degradation.

    Retries on ``Unavailable`` (which covers quota and timeout errors).
    Everything else, ``InvalidCredential`` in particular, propagates on the
    first occurrence.

    Attributes:
        client: The wrapped ContentClient
        base_delay: Backoff base in seconds; attempt ``n`` waits ``base * 2**n``
        default_max_retries: Retries used when a call does not specify any
    """

    def __init__(
        self,
        client: ContentClient,
        base_delay: float | None = None,
        default_max_retries: int | None = None,
    ) -> None:
        self.client = client
        self.base_delay = (
            base_delay if base_delay is not None else settings.retry_base_delay_seconds
        )
        self.default_max_retries = (
            default_max_retries if default_max_retries is not None
            else settings.generation_max_retries
        )

    async def generate_with_retry(
        self,
        caller_id: str,
        prompt: str,
        system_instruction: str | None = None,
        max_retries: int | None = None,
    ) -> str | None:
        """Generate with up to ``max_retries`` retries after the first attempt.

        Args:
            caller_id: Whose credential and quota to use
            prompt: The user prompt
            system_instruction: Optional system instruction
            max_retries: Retry budget (defaults to ``default_max_retries``)

        Returns:
            The response text, or None if the loop ran no attempt at all
            (only possible with a negative budget)

        Raises:
            Unavailable: Once the retry budget is exhausted
            GenerationError: Any non-retryable failure, immediately
        """
        if max_retries is None:
            max_retries = self.default_max_retries

        current_prompt = prompt
        current_system = system_instruction

        for attempt in range(max_retries + 1):
            try:
                return await self.client.generate(caller_id, current_prompt, current_system)
            except Unavailable as e:
                if attempt >= max_retries:
                    logger.error(
                        "generation_failed_all_retries",
                        caller_id=caller_id,
                        attempts=attempt + 1,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    raise

                delay = self.base_delay * (2 ** attempt)
                current_prompt = shrink_prompt(current_prompt)
                if current_system:
                    current_system = shrink_prompt(current_system)

                logger.warning(
                    "generation_retry",
                    caller_id=caller_id,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    error_type=type(e).__name__,
                    retry_delay=delay,
                    prompt_chars=len(current_prompt),
                )
                await self._async_sleep(delay)

        return None

    async def _async_sleep(self, seconds: float) -> None:
        """Async sleep for retry delay.

        Extracted to a method for easier testing/mocking.

        Args:
            seconds: Number of seconds to sleep
        """
        await asyncio.sleep(seconds)
