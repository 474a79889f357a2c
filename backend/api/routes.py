"""HTTP API routes for the PlanForge backend.

This module defines the HTTP endpoints for stage invocation, the task views
used by agents, caller credentials, runtime model configuration and health
checks. Generation errors are mapped onto HTTP status codes here.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status
from fastapi.responses import PlainTextResponse

from config import settings
from generation.errors import (
    GenerationError,
    InvalidCredential,
    MissingPrerequisite,
    QuotaExceeded,
    Unavailable,
    UnknownStage,
)
from models.schemas import (
    CredentialUpdateRequest,
    GeneratedTask,
    GenerationStatusResponse,
    HealthResponse,
    ModelConfigRequest,
    PendingTaskSummary,
    StageOverview,
    StageRequest,
    StageResponse,
    TaskUpdateRequest,
)

if TYPE_CHECKING:
    from generation.client import ClientRegistry
    from generation.orchestrator import StageOrchestrator
    from models.interfaces import RuntimeConfigStore

logger = structlog.get_logger(__name__)

router = APIRouter()

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _to_http_error(error: GenerationError) -> HTTPException:
    """Translate a generation error into a user-facing HTTP error."""
    if isinstance(error, InvalidCredential):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Generation failed, check your Gemini API key: {error}",
        )
    if isinstance(error, (UnknownStage, MissingPrerequisite)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, QuotaExceeded):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="AI quota exceeded, please wait a minute and try again.",
        )
    if isinstance(error, Unavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI model overloaded, try again in a moment.",
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Generation failed: {error}",
    )


async def _get_project_task(project_id: str, task_id: str) -> GeneratedTask:
    task = await get_orchestrator().get_task(task_id)
    if task is None or task.project_id != project_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task {task_id} not found",
        )
    return task


def get_caller_id(
    x_user_id: Annotated[str | None, Header(description="Calling user id")] = None,
) -> str:
    """Resolve the caller from the ``X-User-Id`` header."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


CallerId = Annotated[str, Depends(get_caller_id)]


# Dependencies (set during application startup)
_orchestrator: StageOrchestrator | None = None
_client_registry: ClientRegistry | None = None
_runtime_config: RuntimeConfigStore | None = None


def set_orchestrator(orchestrator: StageOrchestrator) -> None:
    """Set the stage orchestrator instance for the routes.

    This should be called during application startup to inject the
    orchestrator dependency.

    Args:
        orchestrator: The StageOrchestrator instance to use for all routes.
    """
    global _orchestrator
    _orchestrator = orchestrator
    logger.info("orchestrator_configured")


def get_orchestrator() -> StageOrchestrator:
    """Get the stage orchestrator instance.

    Raises:
        RuntimeError: If the orchestrator has not been configured.
    """
    if _orchestrator is None:
        logger.error("orchestrator_not_configured")
        raise RuntimeError(
            "StageOrchestrator not configured. Call set_orchestrator() during startup."
        )
    return _orchestrator


def set_client_registry(registry: ClientRegistry) -> None:
    global _client_registry
    _client_registry = registry


def get_client_registry() -> ClientRegistry:
    if _client_registry is None:
        raise RuntimeError(
            "ClientRegistry not configured. Call set_client_registry() during startup."
        )
    return _client_registry


def set_runtime_config(store: RuntimeConfigStore) -> None:
    global _runtime_config
    _runtime_config = store


def get_runtime_config() -> RuntimeConfigStore:
    if _runtime_config is None:
        raise RuntimeError(
            "RuntimeConfigStore not configured. Call set_runtime_config() during startup."
        )
    return _runtime_config


# -----------------------------------------------------------------------------
# Stage invocation
# -----------------------------------------------------------------------------


@router.post(
    "/api/projects/{project_id}/execute_coding",
    response_model=StageResponse,
    status_code=status.HTTP_200_OK,
    summary="Run a build-plan stage",
    description="Generate a stage's tasks, mark a stage complete, or reset the pipeline.",
)
async def execute_stage(
    project_id: Annotated[str, Path(description="The project ID")],
    request: StageRequest,
    caller_id: CallerId,
) -> StageResponse:
    """Invoke a stage action.

    For adaptive stages, ``offset``/``limit`` process one window of the file
    list; the returned cursor drives the next call until ``is_complete``.

    Raises:
        HTTPException: 400 for unknown stages, missing prerequisites or a bad
            credential; 429 on quota exhaustion; 503 on overload.
    """
    orchestrator = get_orchestrator()

    try:
        response = await orchestrator.execute(project_id, caller_id, request)
    except GenerationError as e:
        logger.warning(
            "stage_request_failed",
            project_id=project_id,
            stage=request.stage,
            action=str(request.action),
            error_type=type(e).__name__,
            error=str(e),
        )
        raise _to_http_error(e) from e
    except Exception as e:
        logger.error(
            "stage_request_error",
            project_id=project_id,
            stage=request.stage,
            error=str(e),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to run stage: {e!s}",
        ) from e

    logger.info(
        "stage_request_complete",
        project_id=project_id,
        stage=request.stage,
        action=str(request.action),
        tasks=len(response.prompts),
    )
    return response


@router.get(
    "/api/projects/{project_id}/execute_coding",
    response_model=StageOverview,
    summary="List generated tasks",
    description="All tasks of a project ordered by sequence, with per-stage status.",
)
async def get_stage_overview(
    project_id: Annotated[str, Path(description="The project ID")],
) -> StageOverview:
    return await get_orchestrator().overview(project_id)


@router.get(
    "/api/projects/{project_id}/status",
    response_model=GenerationStatusResponse,
    summary="Generation status",
    description="Whether any stage of the project is currently generating.",
)
async def get_generation_status(
    project_id: Annotated[str, Path(description="The project ID")],
) -> GenerationStatusResponse:
    return await get_orchestrator().generation_status(project_id)


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------


@router.put(
    "/api/projects/{project_id}/tasks/{task_id}",
    response_model=GeneratedTask,
    summary="Edit a task",
    description="Replace the text of a generated task.",
)
async def update_task(
    project_id: Annotated[str, Path(description="The project ID")],
    task_id: Annotated[str, Path(description="The task ID")],
    request: TaskUpdateRequest,
) -> GeneratedTask:
    task = await _get_project_task(project_id, task_id)
    await get_orchestrator().update_task_text(task_id, request.prompt_text)
    logger.info("task_text_updated", project_id=project_id, task_id=task_id)
    return task.model_copy(update={"text": request.prompt_text})


@router.get(
    "/api/projects/{project_id}/tasks/pending",
    response_model=list[PendingTaskSummary],
    summary="Pending tasks",
    description="Tasks not yet completed, in execution order.",
)
async def list_pending_tasks(
    project_id: Annotated[str, Path(description="The project ID")],
    limit: Annotated[
        int, Query(description="Maximum tasks to return", ge=1, le=100)
    ] = settings.pending_tasks_limit,
) -> list[PendingTaskSummary]:
    return await get_orchestrator().pending_tasks(project_id, limit)


@router.post(
    "/api/tasks/{task_id}/complete",
    status_code=status.HTTP_200_OK,
    summary="Complete a task",
    description="Mark a task as COMPLETED.",
)
async def complete_task(
    task_id: Annotated[str, Path(description="The task ID")],
) -> dict[str, str]:
    if not await get_orchestrator().mark_complete(task_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task {task_id} not found",
        )
    return {"status": "success", "message": f"Task {task_id} marked as completed"}


@router.get(
    "/api/tasks/{task_id}/prompt",
    response_class=PlainTextResponse,
    summary="Read a task",
    description="Plain-text body of a task; target of prompt://<id> handoff pointers.",
)
async def get_task_prompt(
    task_id: Annotated[str, Path(description="The task ID")],
) -> PlainTextResponse:
    task = await get_orchestrator().get_task(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task {task_id} not found",
        )
    return PlainTextResponse(content=task.text)


# -----------------------------------------------------------------------------
# Credentials & runtime configuration
# -----------------------------------------------------------------------------


@router.put(
    "/api/user/gemini-key",
    status_code=status.HTTP_200_OK,
    summary="Store API key",
    description="Store the caller's Gemini API key and drop its cached client.",
)
async def update_gemini_key(
    request: CredentialUpdateRequest,
    caller_id: CallerId,
) -> dict[str, str]:
    await get_client_registry().update_credential(caller_id, request.api_key)
    return {"status": "success", "message": "Gemini API key updated"}


@router.put(
    "/api/admin/model",
    status_code=status.HTTP_200_OK,
    summary="Set model",
    description="Change the model used for all subsequent generation calls.",
)
async def update_model(request: ModelConfigRequest) -> dict[str, str]:
    await get_runtime_config().set_runtime_value(settings.model_config_key, request.model)
    logger.info("model_updated", model=request.model)
    return {"status": "success", "model": request.model}


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Reports whether the generation engine is configured.",
)
async def health_check() -> HealthResponse:
    try:
        get_orchestrator()
        overall_status = "healthy"
    except RuntimeError:
        # Orchestrator not configured yet (e.g., during startup)
        overall_status = "unhealthy"

    return HealthResponse(status=overall_status, timestamp=time.time())
