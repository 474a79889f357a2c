"""Context bundles: prerequisite feature text substituted into templates.

A bundle is built fresh for every stage invocation and never persisted.
Missing prerequisites resolve to an empty string.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog

from generation.stages import ENV_FEATURE_KEY
from models.interfaces import FeatureOutputStore

logger = structlog.get_logger(__name__)

# Placeholder name -> feature whose output fills it
CONTEXT_FEATURES: dict[str, str] = {
    "vision_output": "vision",
    "rules_output": "rules",
    "tech_stack": "tech_choices",
    "data_models_output": "data_models",
    "apis_output": "apis",
    "env_output": ENV_FEATURE_KEY,
}

# Placeholders a generator may leave in task text for the second pass
GENERATED_TEXT_PLACEHOLDERS = ("tech_stack", "rules_output", "env_output")

_PLACEHOLDER = re.compile(r"\{\{\s*(raw:)?([A-Za-z0-9_]+)\s*\}\}")


def substitute(template: str, values: Mapping[str, str]) -> str:
    """Replace every ``{{name}}`` token found in ``values``.

    Substitution is a single pass, so inserted values are never rescanned.
    Unknown tokens are left as they are. ``{{raw:name}}`` renders as the
    literal token ``{{name}}``, for templates that must show a placeholder
    to the model.
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(2)
        if match.group(1):
            return "{{" + name + "}}"
        return values[name] if name in values else match.group(0)

    return _PLACEHOLDER.sub(replace, template)


@dataclass(frozen=True)
class ContextBundle:
    """Resolved context text keyed by placeholder name."""

    values: Mapping[str, str] = field(default_factory=dict)

    def get(self, name: str) -> str:
        return self.values.get(name, "")

    def apply(self, template: str, extra: Mapping[str, str] | None = None) -> str:
        """Substitute context (and any per-call ``extra`` values) into a template."""
        if extra:
            return substitute(template, {**self.values, **extra})
        return substitute(template, self.values)

    def apply_to_generated(self, text: str) -> str:
        """Second pass over model-written task text."""
        return substitute(
            text, {name: self.get(name) for name in GENERATED_TEXT_PLACEHOLDERS}
        )


async def resolve_context(store: FeatureOutputStore, project_id: str) -> ContextBundle:
    """Read every prerequisite feature output for a project."""
    values: dict[str, str] = {}
    for placeholder, feature_key in CONTEXT_FEATURES.items():
        values[placeholder] = await store.get_feature_output(project_id, feature_key) or ""

    missing = sorted(name for name, value in values.items() if not value)
    logger.debug("context_resolved", project_id=project_id, missing=missing)
    return ContextBundle(values=values)
