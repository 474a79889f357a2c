"""Pydantic schemas for build-plan generation and the HTTP API.

This module defines the data models shared by the generation engine, the
persistence layer and the HTTP handlers. All models use Pydantic v2.
"""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class StageStatus(StrEnum):
    """Per-stage generation progress."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class TaskStatus(StrEnum):
    """Consumption status of a generated task."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class StageAction(StrEnum):
    """Actions accepted by the stage endpoint."""

    GENERATE = "generate"
    COMPLETE_STAGE = "complete_stage"
    RESET = "reset"


class FileNode(BaseModel):
    """A node of the file tree produced by the structure stage.

    Folders carry ``children``; only ``file`` nodes survive flattening.
    """

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    path: str = ""
    type: Literal["file", "folder"] = "file"
    order: int = 0
    dependencies: list[str] = Field(default_factory=list)
    summary: str = ""
    children: list[FileNode] = Field(default_factory=list)

    @property
    def resolved_path(self) -> str:
        """Path used for sorting and prompting (falls back to the name)."""
        return self.path or self.name


FileNode.model_rebuild()


class GeneratorConfig(BaseModel):
    """Prompt templates for one sub-generator.

    Template bodies contain ``{{placeholder}}`` tokens substituted with
    context values before the call.
    """

    key: str
    system_template: str
    user_template: str


class PromptDraft(BaseModel):
    """One task as returned by the model, before ids and sequence are assigned."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(default="Untitled task")
    prompt_text: str = Field(default="")


class GeneratorOutput(BaseModel):
    """Typed shape of a generator's JSON response."""

    model_config = ConfigDict(extra="ignore")

    prompts: list[PromptDraft] = Field(default_factory=list)
    recommended_variables: dict[str, Any] | None = None


class GeneratedTask(BaseModel):
    """A persisted, ordered coding task for the autonomous agent."""

    id: str = Field(description="Unique task identifier", examples=["task_a1b2c3d4e5f6"])
    project_id: str = Field(description="Owning project")
    stage: str = Field(description="Stage key that produced this task")
    sequence: int = Field(ge=0, description="stage_order * 1000 + index")
    title: str
    text: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: float = Field(default_factory=time.time)

    @property
    def access_uri(self) -> str:
        """Handoff pointer an agent uses to fetch this task."""
        return f"prompt://{self.id}"


class PaginationCursor(BaseModel):
    """Window over the sorted file list for paginated stages."""

    offset: int = Field(ge=0)
    limit: int = Field(ge=1)
    total: int = Field(ge=0)
    next_offset: int = Field(ge=0)
    is_complete: bool


class StageRequest(BaseModel):
    """Request body for invoking a stage."""

    stage: str = Field(
        description="Stage key",
        examples=["execute_coding.stage1", "execute_coding.stage3"],
    )
    action: StageAction = Field(default=StageAction.GENERATE)
    offset: int | None = Field(default=None, ge=0)
    limit: int | None = Field(default=None, ge=1, le=100)


class StageResponse(BaseModel):
    """Tasks produced by one stage invocation."""

    message: str = ""
    prompts: list[GeneratedTask] = Field(default_factory=list)
    pagination: PaginationCursor | None = None


class StageOverview(BaseModel):
    """All tasks of a project plus the per-stage status map."""

    prompts: list[GeneratedTask] = Field(default_factory=list)
    stage_status: dict[str, StageStatus] = Field(default_factory=dict)
    feature_complete: bool = False


class PendingTaskSummary(BaseModel):
    """Compact task view for agents polling for work."""

    id: str
    title: str
    status: TaskStatus
    sequence: int
    prompt_access_uri: str


class TaskUpdateRequest(BaseModel):
    """Request body for editing a task's text."""

    prompt_text: str = Field(min_length=1)


class CredentialUpdateRequest(BaseModel):
    """Request body for storing a caller's backend API key."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(min_length=1, alias="gemini_api_key")


class ModelConfigRequest(BaseModel):
    """Request body for changing the runtime model record."""

    model: str = Field(min_length=1, examples=["gemini-1.5-flash", "gemini/gemini-2.0-flash"])


class GenerationStatusResponse(BaseModel):
    """Whether any stage of a project is currently generating."""

    is_generating: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(description="Overall health status")
    timestamp: float = Field(description="Current server timestamp")
    version: str = Field(default="0.1.0", description="API version")
