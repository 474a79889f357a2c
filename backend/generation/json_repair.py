"""Parsing of model output, with a best-effort repair fallback.

Two paths exist and are kept deliberately separate:

- ``parse_model_json`` + ``to_generator_output``: the primary, typed path.
  Markdown fences are stripped and the remainder must be valid JSON that
  validates as ``GeneratorOutput``.
- ``JsonRepair``: used only after the primary path fails. It asks the
  backend once more to re-emit the text as strict JSON, then runs
  ``extract_bracketed_json`` on the answer. That extractor is lossy and
  untyped: it keeps the span from the first ``{``/``[`` to the last
  matching closer and, failing that, strips trailing commas.
"""

import json
import re
from typing import Any

import structlog
from pydantic import ValidationError

from generation.client import ContentClient
from generation.errors import MalformedOutput, Unrepairable
from models.schemas import GeneratorOutput

logger = structlog.get_logger(__name__)

REPAIR_SYSTEM_INSTRUCTION = """\
You are a strict JSON repair tool.
You receive text that was supposed to be JSON but does not parse.
Return the same data as valid JSON.

Rules:
- Output raw JSON only. No markdown fences, no prose before or after.
- Every key and every string value is double-quoted.
- No trailing commas. No comments.
- Escape newlines and quotes inside strings.
- Do not add, drop or rename fields.
"""

_FENCE = re.compile(r"```(?:json)?[ \t]*\n?|\n?[ \t]*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences (```json ... ```) and surrounding space."""
    return _FENCE.sub("", text or "").strip()


def parse_model_json(text: str) -> Any:
    """Parse a model response that should be pure JSON.

    Args:
        text: Raw response text

    Returns:
        The decoded JSON value

    Raises:
        MalformedOutput: If the text (minus fences) is empty or not JSON
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise MalformedOutput("Empty model response", raw_text=text or "")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedOutput(f"Model response is not valid JSON: {e}", raw_text=text) from e


def extract_bracketed_json(text: str) -> Any:
    """Recover a JSON value by bracket search. Lossy fallback.

    Takes the first ``{`` or ``[`` (whichever comes first) and the last
    matching closer, and parses that span. If the span does not parse,
    trailing commas before ``}``/``]`` are removed and parsing is retried;
    that cleanup can also touch commas inside string values.

    Raises:
        Unrepairable: If no bracket is found or the span does not parse
    """
    text = text or ""
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        raise Unrepairable("No JSON object or array found", raw_text=text)

    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        raise Unrepairable("Unbalanced JSON brackets", raw_text=text)

    candidate = text[start : end + 1]
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    try:
        return json.loads(_TRAILING_COMMA.sub(r"\1", candidate))
    except json.JSONDecodeError as e:
        raise Unrepairable(f"Bracketed span is not valid JSON: {e}", raw_text=text) from e


def to_generator_output(data: Any) -> GeneratorOutput:
    """Validate decoded JSON as a generator result.

    A bare array is accepted as the ``prompts`` list.

    Raises:
        MalformedOutput: If the value does not have the expected shape
    """
    if isinstance(data, list):
        data = {"prompts": data}
    if not isinstance(data, dict):
        raise MalformedOutput(f"Expected a JSON object, got {type(data).__name__}")
    try:
        return GeneratorOutput.model_validate(data)
    except ValidationError as e:
        raise MalformedOutput(f"Unexpected generator output shape: {e}") from e


class JsonRepair:
    """Single-attempt recovery of structured output from malformed text."""

    def __init__(self, client: ContentClient) -> None:
        self.client = client

    async def repair(self, caller_id: str, malformed_text: str) -> Any:
        """Ask the backend to re-emit ``malformed_text`` as strict JSON.

        Issues exactly one generation call and never recurses.

        Raises:
            Unrepairable: If the repaired text still yields no JSON
        """
        prompt = (
            "The following text should be JSON but fails to parse. "
            "Return it as valid JSON.\n\n"
            f"{malformed_text}"
        )
        repaired = await self.client.generate(caller_id, prompt, REPAIR_SYSTEM_INSTRUCTION)
        value = extract_bracketed_json(repaired)
        logger.info("json_repair_succeeded", caller_id=caller_id, input_chars=len(malformed_text))
        return value

    async def parse_with_repair(self, caller_id: str, text: str) -> GeneratorOutput:
        """Parse generator output, falling back to one repair attempt.

        Raises:
            Unrepairable: If the repair attempt fails
            MalformedOutput: If the repaired JSON has the wrong shape
        """
        try:
            return to_generator_output(parse_model_json(text))
        except MalformedOutput as e:
            logger.warning(
                "generator_output_malformed",
                caller_id=caller_id,
                error=str(e),
                response_chars=len(text or ""),
            )
        return to_generator_output(await self.repair(caller_id, text))
