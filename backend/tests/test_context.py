"""Tests for generation/context.py -- placeholder substitution and resolution."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from generation.context import CONTEXT_FEATURES, ContextBundle, resolve_context, substitute
from generation.stages import ENV_FEATURE_KEY


class TestSubstitute:
    """``{{name}}`` replacement."""

    def test_replaces_every_occurrence(self) -> None:
        result = substitute("{{a}} and {{a}} and {{ b }}", {"a": "x", "b": "y"})
        assert result == "x and x and y"

    def test_unknown_tokens_kept(self) -> None:
        assert substitute("keep {{unknown}}", {"a": "x"}) == "keep {{unknown}}"

    def test_inserted_values_not_rescanned(self) -> None:
        assert substitute("{{a}}", {"a": "{{b}}", "b": "no"}) == "{{b}}"

    def test_raw_renders_literal_token(self) -> None:
        assert substitute("use {{raw:tech_stack}}", {"tech_stack": "React"}) == (
            "use {{tech_stack}}"
        )

    def test_empty_value(self) -> None:
        assert substitute("[{{a}}]", {"a": ""}) == "[]"


class TestContextBundle:
    """Resolved context applied to templates and generated text."""

    def test_apply_with_extra(self) -> None:
        bundle = ContextBundle(values={"tech_stack": "React"})
        result = bundle.apply("{{tech_stack}}: {{files_batch}}", {"files_batch": "[...]"})
        assert result == "React: [...]"

    def test_apply_to_generated_only_touches_generated_placeholders(self) -> None:
        bundle = ContextBundle(
            values={"tech_stack": "React", "rules_output": "No any", "vision_output": "V"}
        )
        text = "{{tech_stack}} | {{rules_output}} | {{env_output}} | {{vision_output}}"
        assert bundle.apply_to_generated(text) == "React | No any |  | {{vision_output}}"

    def test_missing_key_is_empty(self) -> None:
        assert ContextBundle().get("rules_output") == ""


class TestResolveContext:
    """Prerequisite feature lookup."""

    @pytest.mark.asyncio
    async def test_missing_features_resolve_to_empty(self) -> None:
        outputs = {"vision": "A todo app", ENV_FEATURE_KEY: '{"PORT": "port"}'}
        store = MagicMock()
        store.get_feature_output = AsyncMock(
            side_effect=lambda project_id, key: outputs.get(key)
        )

        bundle = await resolve_context(store, "proj_1")

        assert bundle.get("vision_output") == "A todo app"
        assert bundle.get("env_output") == '{"PORT": "port"}'
        assert bundle.get("rules_output") == ""
        assert set(bundle.values) == set(CONTEXT_FEATURES)
        assert store.get_feature_output.await_count == len(CONTEXT_FEATURES)
