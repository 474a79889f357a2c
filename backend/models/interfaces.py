"""Collaborator interfaces consumed by the generation engine.

The orchestrator and clients depend only on these protocols.
``models.database.ProjectStore`` implements all of them on SQLite;
tests are free to substitute lighter fakes.
"""

from typing import Protocol

from models.schemas import FileNode, GeneratedTask, GeneratorConfig, StageStatus


class FeatureOutputStore(Protocol):
    """Prerequisite feature text and stage progress."""

    async def get_feature_output(self, project_id: str, feature_key: str) -> str | None: ...

    async def set_feature_output(self, project_id: str, feature_key: str, output: str) -> None: ...

    async def set_stage_status(
        self, project_id: str, stage_key: str, status: StageStatus
    ) -> None: ...

    async def get_stage_statuses(self, project_id: str) -> dict[str, StageStatus]: ...

    async def set_feature_complete(self, project_id: str, complete: bool) -> None: ...

    async def is_feature_complete(self, project_id: str) -> bool: ...


class StructureArtifactStore(Protocol):
    """File tree persisted by the structure stage."""

    async def get_structure_tree(
        self, project_id: str, stage_key: str
    ) -> list[FileNode] | None: ...


class TaskStore(Protocol):
    """Generated tasks."""

    async def delete_tasks(self, project_id: str, stage_key: str | None = None) -> int: ...

    async def insert_tasks(self, tasks: list[GeneratedTask]) -> None: ...

    async def list_tasks(
        self, project_id: str, stage_key: str | None = None
    ) -> list[GeneratedTask]: ...

    async def get_task(self, task_id: str) -> GeneratedTask | None: ...

    async def list_pending_tasks(self, project_id: str, limit: int) -> list[GeneratedTask]: ...

    async def update_task_text(self, task_id: str, text: str) -> bool: ...

    async def mark_complete(self, task_id: str) -> bool: ...


class PromptConfigStore(Protocol):
    """Read-only prompt templates per sub-generator."""

    async def get_generator_config(self, key: str) -> GeneratorConfig | None: ...


class RuntimeConfigStore(Protocol):
    """Operator-editable runtime configuration records."""

    async def get_runtime_value(self, key: str) -> str | None: ...

    async def set_runtime_value(self, key: str, value: str) -> None: ...


class CredentialStore(Protocol):
    """Per-caller backend API keys."""

    async def get_api_key(self, caller_id: str) -> str | None: ...

    async def set_api_key(self, caller_id: str, api_key: str) -> None: ...
