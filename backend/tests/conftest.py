"""Shared test fixtures for backend tests.

Provides a scripted content client, a retrying client that never really
sleeps, a temporary ProjectStore and a fake generative backend that answers
by generator role, so tests never touch a real LLM API.
"""

import json
import os
import re
import sys
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from generation.retry import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(Path(__file__).resolve().parent.parent)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

# Use litellm's bundled model cost map instead of fetching it over the
# network at import time; the offline-fetch warning deadlocks under pytest.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from generation.json_repair import REPAIR_SYSTEM_INSTRUCTION, JsonRepair  # noqa: E402
from generation.orchestrator import StageOrchestrator  # noqa: E402
from generation.prompts import DEFAULT_GENERATOR_CONFIGS  # noqa: E402
from generation.retry import RetryingClient  # noqa: E402
from models.database import ProjectStore  # noqa: E402

PROJECT_ID = "proj_test"
CALLER_ID = "user_test"

# ---------------------------------------------------------------------------
# Scripted content client
# ---------------------------------------------------------------------------


class ScriptedContentClient:
    """Stand-in for ContentClient.

    Answers come from ``responses`` in order, or from ``responder`` when
    given. An answer that is an exception instance is raised instead.
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        responder: Callable[[str, str | None], str | Exception] | None = None,
    ) -> None:
        self.responses: list[str | Exception] = list(responses or [])
        self.responder = responder
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        caller_id: str,
        prompt: str,
        system_instruction: str | None = None,
    ) -> str:
        self.calls.append(
            {"caller_id": caller_id, "prompt": prompt, "system": system_instruction}
        )
        if self.responder is not None:
            result = self.responder(prompt, system_instruction)
        else:
            result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class InstantRetryingClient(RetryingClient):
    """RetryingClient that records backoff delays instead of sleeping."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.delays: list[float] = []

    async def _async_sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# Fake generative backend
# ---------------------------------------------------------------------------

_PATH_FIELD = re.compile(r'"path":\s*"([^"]+)"')


def prompts_json(*items: tuple[str, str], **extra: Any) -> str:
    """Encode ``(title, prompt_text)`` pairs as a generator response."""
    return json.dumps(
        {"prompts": [{"title": t, "prompt_text": p} for t, p in items], **extra}
    )


def make_tree(paths_by_order: dict[int, list[str]]) -> dict[str, Any]:
    """Build a ``{"tree": [...]}`` structure with one folder per order."""
    folders = []
    for order, paths in paths_by_order.items():
        folders.append(
            {
                "name": f"layer{order}",
                "type": "folder",
                "children": [
                    {
                        "name": path.rsplit("/", 1)[-1],
                        "type": "file",
                        "path": path,
                        "order": order,
                        "dependencies": [],
                        "summary": f"Implements {path}",
                        "children": [],
                    }
                    for path in paths
                ],
            }
        )
    return {"tree": folders}


DEFAULT_TREE = make_tree(
    {
        1: ["src/pages/b.ts", "src/pages/a.ts"],
        0: ["src/utils.ts", "package.json", "src/types.ts"],
        2: ["src/App.tsx", "src/main.tsx"],
    }
)

SORTED_DEFAULT_PATHS = [
    "package.json",
    "src/types.ts",
    "src/utils.ts",
    "src/pages/a.ts",
    "src/pages/b.ts",
    "src/App.tsx",
    "src/main.tsx",
]


class FakePlanBackend:
    """Answers each generator role with well-formed output.

    Per-file and API responses contain one prompt per requested item; the
    ``file_failure`` and ``api_failure`` hooks can replace a response with
    other text or an exception.
    """

    def __init__(self, tree: dict[str, Any] | None = None) -> None:
        self.tree = tree or DEFAULT_TREE
        self.check_prompts = [("Agent Pre-Flight Check", "Inspect the project folder.")]
        self.env_variables: dict[str, str] = {"DATABASE_URL": "Postgres connection string"}
        self.file_failure: Callable[[list[str]], str | Exception | None] | None = None
        self.api_failure: Callable[[list[str]], str | Exception | None] | None = None
        self.batches: list[list[str]] = []

    def __call__(self, prompt: str, system: str | None) -> str | Exception:
        system = system or ""
        if system == REPAIR_SYSTEM_INSTRUCTION:
            return "still not json"
        if "Identify the key Environment Variables" in system:
            return prompts_json(
                ("Proposed Environment Variables", "Create a .env.example file."),
                recommended_variables=self.env_variables,
            )
        if "verify the project foundation" in system:
            return prompts_json(*self.check_prompts)
        if "Lead Architect" in system:
            return prompts_json(
                (
                    "Create Production Skeleton",
                    json.dumps(self.tree)
                    + "\n\nBased on the above structure, create all directories and empty files.",
                )
            )
        if "Senior Factory Generator" in system:
            paths = _PATH_FIELD.findall(prompt)
            self.batches.append(paths)
            if self.file_failure is not None:
                failure = self.file_failure(paths)
                if failure is not None:
                    return failure
            return prompts_json(
                *[
                    (f"Create {path}", f"Write {path}.\nTech Stack: {{{{tech_stack}}}}")
                    for path in paths
                ]
            )
        if "Backend Engineer" in system:
            names = re.findall(r'"name":\s*"([^"]+)"', prompt)
            if self.api_failure is not None:
                failure = self.api_failure(names)
                if failure is not None:
                    return failure
            return prompts_json(*[(f"Implement {name}", f"Wire {name}.") for name in names])
        raise AssertionError(f"Unexpected generator call: {system[:60]!r}")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def store(tmp_path: Path) -> AsyncGenerator[ProjectStore, None]:
    """Fresh SQLite-backed ProjectStore seeded with default prompt configs."""
    project_store = ProjectStore(str(tmp_path / "planforge.db"))
    await project_store.init(generator_configs=DEFAULT_GENERATOR_CONFIGS)
    yield project_store


@pytest.fixture()
def backend() -> FakePlanBackend:
    return FakePlanBackend()


@pytest.fixture()
def content_client(backend: FakePlanBackend) -> ScriptedContentClient:
    return ScriptedContentClient(responder=backend)


def make_orchestrator(
    store: ProjectStore,
    client: ScriptedContentClient,
    **overrides: Any,
) -> StageOrchestrator:
    """StageOrchestrator on a real store and a scripted client."""
    retrying = InstantRetryingClient(client, base_delay=1.0, default_max_retries=2)  # type: ignore[arg-type]
    return StageOrchestrator(
        features=store,
        structures=store,
        tasks=store,
        prompt_configs=store,
        retrying=retrying,
        repair=JsonRepair(client),  # type: ignore[arg-type]
        **overrides,
    )


@pytest.fixture()
def orchestrator(store: ProjectStore, content_client: ScriptedContentClient) -> StageOrchestrator:
    return make_orchestrator(store, content_client, adaptive_batch_size=3, page_limit=3)
