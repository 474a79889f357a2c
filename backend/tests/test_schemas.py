"""Tests for models/schemas.py -- Pydantic request/response models.

Validates enum values, request validation rules, the ``gemini_api_key``
alias on the credential request and lenient parsing of model output.
"""

import pytest
from pydantic import ValidationError

from models.schemas import (
    CredentialUpdateRequest,
    FileNode,
    GeneratedTask,
    GeneratorOutput,
    HealthResponse,
    ModelConfigRequest,
    PaginationCursor,
    StageAction,
    StageRequest,
    StageStatus,
    TaskStatus,
    TaskUpdateRequest,
)

# =========================================================================
# Enums
# =========================================================================


class TestEnums:
    """Status and action enum values."""

    def test_stage_statuses(self) -> None:
        assert {s.value for s in StageStatus} == {"PENDING", "IN_PROGRESS", "COMPLETED"}

    def test_task_statuses(self) -> None:
        assert {s.value for s in TaskStatus} == {"PENDING", "COMPLETED"}

    def test_action_string_coercion(self) -> None:
        assert StageAction("complete_stage") == StageAction.COMPLETE_STAGE


# =========================================================================
# StageRequest
# =========================================================================


class TestStageRequest:
    """Request model for stage invocation."""

    def test_defaults(self) -> None:
        req = StageRequest(stage="execute_coding.stage1")
        assert req.action == StageAction.GENERATE
        assert req.offset is None
        assert req.limit is None

    def test_negative_offset(self) -> None:
        with pytest.raises(ValidationError):
            StageRequest(stage="execute_coding.stage3", offset=-1)

    def test_limit_bounds(self) -> None:
        with pytest.raises(ValidationError):
            StageRequest(stage="execute_coding.stage3", limit=0)
        with pytest.raises(ValidationError):
            StageRequest(stage="execute_coding.stage3", limit=101)
        assert StageRequest(stage="execute_coding.stage3", limit=100).limit == 100

    def test_missing_stage(self) -> None:
        with pytest.raises(ValidationError):
            StageRequest.model_validate({"action": "generate"})


# =========================================================================
# Task models
# =========================================================================


class TestGeneratedTask:
    """Persisted task model."""

    def test_access_uri(self) -> None:
        task = GeneratedTask(
            id="task_0123456789ab",
            project_id="proj_1",
            stage="execute_coding.check",
            sequence=0,
            title="Check",
            text="Inspect",
        )
        assert task.access_uri == "prompt://task_0123456789ab"
        assert task.status == TaskStatus.PENDING

    def test_negative_sequence(self) -> None:
        with pytest.raises(ValidationError):
            GeneratedTask(
                id="t", project_id="p", stage="s", sequence=-1, title="x", text="y"
            )

    def test_update_requires_text(self) -> None:
        with pytest.raises(ValidationError):
            TaskUpdateRequest(prompt_text="")


# =========================================================================
# Model output shapes
# =========================================================================


class TestGeneratorOutput:
    """Lenient parsing of generator JSON."""

    def test_extra_fields_ignored(self) -> None:
        output = GeneratorOutput.model_validate(
            {"prompts": [{"title": "A", "prompt_text": "x", "priority": 1}], "notes": "hi"}
        )
        assert output.prompts[0].title == "A"

    def test_file_node_children(self) -> None:
        node = FileNode.model_validate(
            {"name": "src", "type": "folder", "children": [{"name": "a.ts", "path": "src/a.ts"}]}
        )
        assert node.children[0].resolved_path == "src/a.ts"
        assert FileNode(name="b.ts").resolved_path == "b.ts"

    def test_unknown_node_type(self) -> None:
        with pytest.raises(ValidationError):
            FileNode.model_validate({"name": "x", "type": "symlink"})


# =========================================================================
# Configuration requests
# =========================================================================


class TestConfigurationRequests:
    """Credential and model records."""

    def test_credential_alias(self) -> None:
        req = CredentialUpdateRequest.model_validate({"gemini_api_key": "key-1"})
        assert req.api_key == "key-1"

    def test_credential_by_name(self) -> None:
        assert CredentialUpdateRequest(api_key="key-2").api_key == "key-2"

    def test_empty_credential(self) -> None:
        with pytest.raises(ValidationError):
            CredentialUpdateRequest.model_validate({"gemini_api_key": ""})

    def test_empty_model(self) -> None:
        with pytest.raises(ValidationError):
            ModelConfigRequest(model="")


class TestResponses:
    """Response models."""

    def test_pagination_cursor(self) -> None:
        cursor = PaginationCursor(offset=0, limit=5, total=0, next_offset=0, is_complete=True)
        assert cursor.is_complete is True

    def test_health_default_version(self) -> None:
        resp = HealthResponse(status="healthy", timestamp=1.0)
        assert resp.version == "0.1.0"

    def test_health_invalid_status(self) -> None:
        with pytest.raises(ValidationError):
            HealthResponse(status="degraded", timestamp=1.0)  # type: ignore[arg-type]
