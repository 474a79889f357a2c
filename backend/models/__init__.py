"""Models module for Pydantic schemas.

This module exposes all request/response models used by the API.
"""

from models.schemas import (
    CredentialUpdateRequest,
    FileNode,
    GeneratedTask,
    GenerationStatusResponse,
    GeneratorConfig,
    HealthResponse,
    ModelConfigRequest,
    PaginationCursor,
    PendingTaskSummary,
    StageAction,
    StageOverview,
    StageRequest,
    StageResponse,
    StageStatus,
    TaskStatus,
    TaskUpdateRequest,
)

__all__ = [
    "CredentialUpdateRequest",
    "FileNode",
    "GeneratedTask",
    "GenerationStatusResponse",
    "GeneratorConfig",
    "HealthResponse",
    "ModelConfigRequest",
    "PaginationCursor",
    "PendingTaskSummary",
    "StageAction",
    "StageOverview",
    "StageRequest",
    "StageResponse",
    "StageStatus",
    "TaskStatus",
    "TaskUpdateRequest",
]
