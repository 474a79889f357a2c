"""Tests for generation/json_repair.py -- typed parsing and the lossy fallback.

Known-bad samples: markdown fences, leading prose, trailing commas.
"""

import pytest

from generation.errors import MalformedOutput, Unrepairable
from generation.json_repair import (
    REPAIR_SYSTEM_INSTRUCTION,
    JsonRepair,
    extract_bracketed_json,
    parse_model_json,
    strip_code_fences,
    to_generator_output,
)
from tests.conftest import CALLER_ID, ScriptedContentClient

# =========================================================================
# Primary path
# =========================================================================


class TestParseModelJson:
    """Fences are stripped; everything else must be JSON."""

    def test_fenced_json(self) -> None:
        text = '```json\n{"prompts": [{"title": "A", "prompt_text": "do A"}]}\n```'
        assert parse_model_json(text)["prompts"][0]["title"] == "A"

    def test_plain_fence(self) -> None:
        assert strip_code_fences("```\n[1, 2]\n```") == "[1, 2]"

    def test_empty_response(self) -> None:
        with pytest.raises(MalformedOutput, match="Empty"):
            parse_model_json("   ")

    def test_leading_prose_rejected(self) -> None:
        with pytest.raises(MalformedOutput) as exc_info:
            parse_model_json('Sure! Here it is: {"prompts": []}')
        assert "Sure!" in exc_info.value.raw_text


class TestToGeneratorOutput:
    """Shape validation."""

    def test_bare_list_wrapped(self) -> None:
        output = to_generator_output([{"title": "A", "prompt_text": "x"}])
        assert [p.title for p in output.prompts] == ["A"]

    def test_missing_fields_defaulted(self) -> None:
        output = to_generator_output({"prompts": [{}]})
        assert output.prompts[0].title == "Untitled task"
        assert output.recommended_variables is None

    def test_recommended_variables(self) -> None:
        output = to_generator_output({"prompts": [], "recommended_variables": {"A": "b"}})
        assert output.recommended_variables == {"A": "b"}

    def test_scalar_rejected(self) -> None:
        with pytest.raises(MalformedOutput):
            to_generator_output("nope")

    def test_wrong_prompts_type_rejected(self) -> None:
        with pytest.raises(MalformedOutput):
            to_generator_output({"prompts": "not a list"})


# =========================================================================
# Lossy fallback
# =========================================================================


class TestExtractBracketedJson:
    """First opener to last matching closer."""

    def test_leading_and_trailing_prose(self) -> None:
        text = 'Here is your JSON:\n{"prompts": [{"title": "A"}]}\nHope this helps!'
        assert extract_bracketed_json(text) == {"prompts": [{"title": "A"}]}

    def test_trailing_commas(self) -> None:
        text = '{"prompts": [{"title": "A",}, {"title": "B"},],}'
        assert extract_bracketed_json(text) == {"prompts": [{"title": "A"}, {"title": "B"}]}

    def test_array_before_object(self) -> None:
        assert extract_bracketed_json('result: [{"a": 1}]') == [{"a": 1}]

    def test_inside_fences(self) -> None:
        assert extract_bracketed_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_no_brackets(self) -> None:
        with pytest.raises(Unrepairable):
            extract_bracketed_json("no json at all")

    def test_unbalanced(self) -> None:
        with pytest.raises(Unrepairable):
            extract_bracketed_json('{"a": 1')

    def test_garbage_span(self) -> None:
        with pytest.raises(Unrepairable):
            extract_bracketed_json("{not: json, at all}")

    def test_unrepairable_is_malformed(self) -> None:
        assert issubclass(Unrepairable, MalformedOutput)


# =========================================================================
# JsonRepair
# =========================================================================


class TestJsonRepair:
    """One repair call, never recursive."""

    @pytest.mark.asyncio
    async def test_valid_output_needs_no_call(self) -> None:
        client = ScriptedContentClient(responses=[])
        repair = JsonRepair(client)  # type: ignore[arg-type]

        output = await repair.parse_with_repair(CALLER_ID, '{"prompts": [{"title": "A"}]}')

        assert output.prompts[0].title == "A"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_malformed_output_repaired_once(self) -> None:
        client = ScriptedContentClient(
            responses=['Fixed:\n```json\n{"prompts": [{"title": "A", "prompt_text": "x"}]}\n```']
        )
        repair = JsonRepair(client)  # type: ignore[arg-type]

        output = await repair.parse_with_repair(CALLER_ID, "{'prompts': [{'title': 'A'}]}")

        assert output.prompts[0].prompt_text == "x"
        assert len(client.calls) == 1
        assert client.calls[0]["system"] == REPAIR_SYSTEM_INSTRUCTION
        assert "{'prompts'" in client.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_failed_repair_raises_unrepairable(self) -> None:
        client = ScriptedContentClient(responses=["I cannot do that", "unused"])
        repair = JsonRepair(client)  # type: ignore[arg-type]

        with pytest.raises(Unrepairable):
            await repair.parse_with_repair(CALLER_ID, "garbage")

        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_repair_returns_raw_value(self) -> None:
        client = ScriptedContentClient(responses=['[{"title": "T"},]'])
        repair = JsonRepair(client)  # type: ignore[arg-type]
        assert await repair.repair(CALLER_ID, "broken") == [{"title": "T"}]
