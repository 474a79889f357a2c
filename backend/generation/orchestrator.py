"""Stage orchestration for build-plan generation.

StageOrchestrator drives one stage invocation to completion:

    mark IN_PROGRESS -> resolve context -> generate (single-shot, fixed
    chunks or adaptive batches) -> assign ids/sequence + handoff footers
    -> replace the stage's stored tasks -> mark COMPLETED on the final page

Failure policy per stage type:
- Single-shot: a failing sub-generator, or one without a config, is logged
  and skipped; siblings still run. If none of them succeeds, the
  last error (or MissingPrerequisite) propagates and the stored tasks are
  left untouched.
- Fixed chunks: a chunk whose output cannot be parsed is logged and
  skipped. Overload after retries aborts the run.
- Adaptive: a single-file batch that still fails, or output that cannot be
  repaired, aborts the invocation and leaves the stage IN_PROGRESS.
- InvalidCredential always propagates.

Generation calls are issued strictly one after another.
"""

import json
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

import structlog

from config import settings
from generation.batching import BatchSplitter, flatten_file_tree, paginate, run_fixed_chunks
from generation.context import ContextBundle, resolve_context
from generation.errors import (
    GenerationError,
    InvalidCredential,
    MalformedOutput,
    MissingPrerequisite,
)
from generation.handoff import handoff_footer, has_footer, sequence_complete_footer
from generation.json_repair import JsonRepair, parse_model_json
from generation.retry import RetryingClient
from generation.stages import (
    ENV_FEATURE_KEY,
    BatchPolicy,
    StageDefinition,
    StageKey,
    get_stage,
    ordered_stages,
    terminal_stage,
)
from models.interfaces import (
    FeatureOutputStore,
    PromptConfigStore,
    StructureArtifactStore,
    TaskStore,
)
from models.schemas import (
    FileNode,
    GeneratedTask,
    GenerationStatusResponse,
    GeneratorConfig,
    GeneratorOutput,
    PaginationCursor,
    PendingTaskSummary,
    PromptDraft,
    StageAction,
    StageOverview,
    StageRequest,
    StageResponse,
    StageStatus,
)

logger = structlog.get_logger(__name__)


def new_task_id() -> str:
    """Generate a unique task id."""
    return f"task_{uuid4().hex[:12]}"


def describe_files(files: list[FileNode]) -> str:
    """JSON description of a file batch for the ``{{files_batch}}`` placeholder."""
    return json.dumps(
        [
            {
                "path": node.resolved_path,
                "summary": node.summary,
                "dependencies": node.dependencies,
            }
            for node in files
        ],
        indent=2,
    )


class StageOrchestrator:
    """Runs build-plan stages against the generative backend.

    Attributes:
        features: Prerequisite feature text and stage status
        structures: File tree of the structure stage
        tasks: Generated task persistence
        prompt_configs: Generator templates
        retrying: Backend access with retries and backoff
        repair: JSON parsing with one repair attempt
    """

    def __init__(
        self,
        features: FeatureOutputStore,
        structures: StructureArtifactStore,
        tasks: TaskStore,
        prompt_configs: PromptConfigStore,
        retrying: RetryingClient,
        repair: JsonRepair,
        page_limit: int | None = None,
        fixed_chunk_size: int | None = None,
        adaptive_batch_size: int | None = None,
        adaptive_max_retries: int | None = None,
    ) -> None:
        self.features = features
        self.structures = structures
        self.tasks = tasks
        self.prompt_configs = prompt_configs
        self.retrying = retrying
        self.repair = repair
        self.page_limit = page_limit if page_limit is not None else settings.default_page_limit
        self.fixed_chunk_size = (
            fixed_chunk_size if fixed_chunk_size is not None else settings.fixed_chunk_size
        )
        self.adaptive_batch_size = (
            adaptive_batch_size if adaptive_batch_size is not None
            else settings.adaptive_batch_size
        )
        self.adaptive_max_retries = (
            adaptive_max_retries if adaptive_max_retries is not None
            else settings.adaptive_max_retries
        )

    # -----------------------------------------------------------------
    # Request dispatch
    # -----------------------------------------------------------------

    async def execute(
        self,
        project_id: str,
        caller_id: str,
        request: StageRequest,
    ) -> StageResponse:
        """Dispatch a stage request on its action."""
        if request.action == StageAction.RESET:
            return await self.reset(project_id)
        if request.action == StageAction.COMPLETE_STAGE:
            return await self.complete_stage(project_id, request.stage)
        return await self.run_stage(
            project_id,
            caller_id,
            request.stage,
            offset=request.offset,
            limit=request.limit,
        )

    # -----------------------------------------------------------------
    # Generation
    # -----------------------------------------------------------------

    async def run_stage(
        self,
        project_id: str,
        caller_id: str,
        stage_key: str,
        offset: int | None = None,
        limit: int | None = None,
    ) -> StageResponse:
        """Generate and persist the tasks of one stage.

        ``offset``/``limit`` select a window of the sorted file list and only
        apply to adaptive stages; passing either enables paginated mode.

        Args:
            project_id: Project whose plan is generated
            caller_id: Whose credential and quota to use
            stage_key: Catalog stage key
            offset: First file of the window
            limit: Files in the window

        Returns:
            The tasks produced by this invocation, plus the cursor when paginated

        Raises:
            UnknownStage: ``stage_key`` is not a catalog stage
            MissingPrerequisite: A required artifact or config is absent
            InvalidCredential: The caller's key is missing or rejected
            Unavailable: Backend overload that retries and splitting could not absorb
            MalformedOutput: Unrepairable output in an adaptive stage
        """
        stage = get_stage(stage_key)
        log = logger.bind(project_id=project_id, stage=str(stage.key))

        await self.features.set_stage_status(project_id, stage.key, StageStatus.IN_PROGRESS)
        context = await resolve_context(self.features, project_id)
        log.info("stage_started", policy=stage.policy.value, offset=offset, limit=limit)

        cursor: PaginationCursor | None = None
        if stage.policy is BatchPolicy.ADAPTIVE:
            drafts, cursor = await self._run_adaptive(
                project_id, caller_id, stage, context, offset, limit
            )
        elif stage.policy is BatchPolicy.FIXED_CHUNKS:
            drafts = await self._run_fixed_chunks(project_id, caller_id, stage, context)
        else:
            drafts = await self._run_single_shot(project_id, caller_id, stage, context)

        appending = cursor is not None and cursor.offset > 0
        is_final = cursor is None or cursor.is_complete
        created = await self._persist(project_id, stage, drafts, appending, is_final)

        if is_final:
            await self.features.set_stage_status(project_id, stage.key, StageStatus.COMPLETED)
            if stage.key == terminal_stage().key:
                await self.features.set_feature_complete(project_id, True)
            log.info("stage_completed", tasks=len(created))
        else:
            log.info(
                "stage_page_completed",
                tasks=len(created),
                next_offset=cursor.next_offset if cursor else None,
                total=cursor.total if cursor else None,
            )

        if cursor is not None:
            message = (
                f"Processed files {cursor.offset}-{cursor.next_offset} of {cursor.total}"
            )
        else:
            message = f"Generated {len(created)} tasks for {stage.key}"
        return StageResponse(message=message, prompts=created, pagination=cursor)

    async def _run_single_shot(
        self,
        project_id: str,
        caller_id: str,
        stage: StageDefinition,
        context: ContextBundle,
    ) -> list[PromptDraft]:
        drafts: list[PromptDraft] = []
        last_error: GenerationError | None = None
        succeeded = 0

        for key in stage.sub_generators:
            config = await self.prompt_configs.get_generator_config(key)
            if config is None:
                logger.warning("generator_config_missing", generator=key, stage=str(stage.key))
                continue

            try:
                output = await self._generate_output(caller_id, config, context)
            except InvalidCredential:
                raise
            except GenerationError as e:
                logger.warning(
                    "sub_generator_skipped",
                    generator=key,
                    stage=str(stage.key),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                last_error = e
                continue

            succeeded += 1
            if stage.key == StageKey.ENV and output.recommended_variables is not None:
                await self.features.set_feature_output(
                    project_id,
                    ENV_FEATURE_KEY,
                    json.dumps(output.recommended_variables, indent=2),
                )
                logger.info(
                    "env_variables_captured",
                    project_id=project_id,
                    count=len(output.recommended_variables),
                )
            drafts.extend(output.prompts)

        if succeeded == 0:
            if last_error is not None:
                raise last_error
            raise MissingPrerequisite(
                f"Generator config not found: {', '.join(stage.sub_generators)}"
            )
        return drafts

    async def _run_fixed_chunks(
        self,
        project_id: str,
        caller_id: str,
        stage: StageDefinition,
        context: ContextBundle,
    ) -> list[PromptDraft]:
        config = await self._require_config(stage)
        items = await self._load_chunk_items(project_id, stage)
        placeholder = f"{stage.chunk_field}_subset"

        async def generate_chunk(chunk: list[Any]) -> list[PromptDraft]:
            output = await self._generate_output(
                caller_id,
                config,
                context,
                extra={placeholder: json.dumps(chunk, indent=2)},
            )
            return output.prompts

        return await run_fixed_chunks(items, self.fixed_chunk_size, generate_chunk)

    async def _run_adaptive(
        self,
        project_id: str,
        caller_id: str,
        stage: StageDefinition,
        context: ContextBundle,
        offset: int | None,
        limit: int | None,
    ) -> tuple[list[PromptDraft], PaginationCursor | None]:
        config = await self._require_config(stage)
        files = flatten_file_tree(await self._require_structure(project_id, stage))

        cursor: PaginationCursor | None = None
        window = files
        if offset is not None or limit is not None:
            start = offset or 0
            size = limit or self.page_limit
            cursor = paginate(len(files), start, size)
            window = files[start : start + size]

        logger.info(
            "adaptive_generation_started",
            project_id=project_id,
            stage=str(stage.key),
            total_files=len(files),
            window_files=len(window),
        )

        async def generate_batch(batch: list[FileNode]) -> list[PromptDraft]:
            output = await self._generate_output(
                caller_id,
                config,
                context,
                extra={"files_batch": describe_files(batch)},
                max_retries=self.adaptive_max_retries,
            )
            return output.prompts

        splitter = BatchSplitter(generate_batch, self.adaptive_batch_size)
        drafts = await splitter.run(window)
        return [
            draft.model_copy(
                update={"prompt_text": context.apply_to_generated(draft.prompt_text)}
            )
            for draft in drafts
        ], cursor

    async def _generate_output(
        self,
        caller_id: str,
        config: GeneratorConfig,
        context: ContextBundle,
        extra: Mapping[str, str] | None = None,
        max_retries: int | None = None,
    ) -> GeneratorOutput:
        """One templated generation call, parsed with a repair fallback."""
        system_instruction = context.apply(config.system_template, extra)
        prompt = context.apply(config.user_template, extra)

        text = await self.retrying.generate_with_retry(
            caller_id, prompt, system_instruction, max_retries=max_retries
        )
        if text is None:
            raise MalformedOutput(f"No response from generator {config.key}")
        return await self.repair.parse_with_repair(caller_id, text)

    async def _require_config(self, stage: StageDefinition) -> GeneratorConfig:
        key = stage.sub_generators[0]
        config = await self.prompt_configs.get_generator_config(key)
        if config is None:
            raise MissingPrerequisite(f"Generator config not found: {key}")
        return config

    async def _require_structure(
        self,
        project_id: str,
        stage: StageDefinition,
    ) -> list[FileNode]:
        required = get_stage(stage.requires) if stage.requires else None
        if required is None:
            raise MissingPrerequisite(f"Stage {stage.key} has no structure stage configured")

        try:
            tree = await self.structures.get_structure_tree(project_id, required.key)
        except MalformedOutput as e:
            raise MissingPrerequisite(
                f"Invalid Stage {required.order} output. Please regenerate Stage {required.order}."
            ) from e
        if not tree:
            raise MissingPrerequisite(
                f"Stage {required.order} Skeleton not found. "
                f"Please run Stage {required.order} first."
            )
        return tree

    async def _load_chunk_items(self, project_id: str, stage: StageDefinition) -> list[Any]:
        """Read the JSON list that feeds a fixed-chunk stage (empty if absent)."""
        if stage.chunk_source is None:
            return []
        raw = await self.features.get_feature_output(project_id, stage.chunk_source)
        if not raw:
            logger.warning(
                "chunk_source_missing", project_id=project_id, feature=stage.chunk_source
            )
            return []

        try:
            data = parse_model_json(raw)
        except MalformedOutput as e:
            logger.warning(
                "chunk_source_unreadable",
                project_id=project_id,
                feature=stage.chunk_source,
                error=str(e),
            )
            return []

        if isinstance(data, dict) and stage.chunk_field:
            data = data.get(stage.chunk_field)
        return list(data) if isinstance(data, list) else []

    async def _persist(
        self,
        project_id: str,
        stage: StageDefinition,
        drafts: list[PromptDraft],
        appending: bool,
        is_final: bool,
    ) -> list[GeneratedTask]:
        """Link drafts into a handoff chain and replace (or extend) stored tasks.

        When appending a later page, the stored tail task of the previous
        page is extended with a handoff to the first new task.
        """
        existing: list[GeneratedTask] = []
        if appending:
            existing = await self.tasks.list_tasks(project_id, stage.key)
        else:
            deleted = await self.tasks.delete_tasks(project_id, stage.key)
            if deleted:
                logger.info(
                    "stage_tasks_replaced",
                    project_id=project_id,
                    stage=str(stage.key),
                    deleted=deleted,
                )

        ids = [new_task_id() for _ in drafts]
        tasks: list[GeneratedTask] = []
        for index, draft in enumerate(drafts):
            text = draft.prompt_text
            if index + 1 < len(drafts):
                text += handoff_footer(ids[index + 1], drafts[index + 1].title)
            elif is_final:
                text += sequence_complete_footer()
            tasks.append(
                GeneratedTask(
                    id=ids[index],
                    project_id=project_id,
                    stage=str(stage.key),
                    sequence=stage.sequence_for(len(existing) + index),
                    title=draft.title,
                    text=text,
                )
            )

        tail = existing[-1] if existing else None
        if tail is not None and not has_footer(tail.text):
            if tasks:
                footer = handoff_footer(tasks[0].id, tasks[0].title)
            elif is_final:
                footer = sequence_complete_footer()
            else:
                footer = ""
            if footer:
                await self.tasks.update_task_text(tail.id, tail.text + footer)

        await self.tasks.insert_tasks(tasks)
        return tasks

    # -----------------------------------------------------------------
    # State transitions
    # -----------------------------------------------------------------

    async def complete_stage(self, project_id: str, stage_key: str) -> StageResponse:
        """Mark a stage COMPLETED without generating anything."""
        stage = get_stage(stage_key)
        await self.features.set_stage_status(project_id, stage.key, StageStatus.COMPLETED)
        if stage.key == terminal_stage().key:
            await self.features.set_feature_complete(project_id, True)
        logger.info("stage_marked_complete", project_id=project_id, stage=str(stage.key))
        return StageResponse(message=f"Stage {stage.key} marked as completed")

    async def reset(self, project_id: str) -> StageResponse:
        """Return every stage to IN_PROGRESS and delete all generated tasks."""
        for stage in ordered_stages():
            await self.features.set_stage_status(project_id, stage.key, StageStatus.IN_PROGRESS)
        await self.features.set_feature_complete(project_id, False)
        deleted = await self.tasks.delete_tasks(project_id)
        logger.info("pipeline_reset", project_id=project_id, deleted=deleted)
        return StageResponse(message="Execute coding feature reset successfully")

    # -----------------------------------------------------------------
    # Views & task operations
    # -----------------------------------------------------------------

    async def list_tasks(
        self,
        project_id: str,
        stage_key: str | None = None,
    ) -> list[GeneratedTask]:
        if stage_key is not None:
            stage_key = get_stage(stage_key).key
        return await self.tasks.list_tasks(project_id, stage_key)

    async def overview(self, project_id: str) -> StageOverview:
        """All tasks ordered by sequence, with the stage-status map."""
        return StageOverview(
            prompts=await self.tasks.list_tasks(project_id),
            stage_status=await self.features.get_stage_statuses(project_id),
            feature_complete=await self.features.is_feature_complete(project_id),
        )

    async def pending_tasks(
        self,
        project_id: str,
        limit: int | None = None,
    ) -> list[PendingTaskSummary]:
        """Tasks an agent still has to work through, in sequence order."""
        tasks = await self.tasks.list_pending_tasks(
            project_id, limit if limit is not None else settings.pending_tasks_limit
        )
        return [
            PendingTaskSummary(
                id=task.id,
                title=task.title,
                status=task.status,
                sequence=task.sequence,
                prompt_access_uri=task.access_uri,
            )
            for task in tasks
        ]

    async def get_task(self, task_id: str) -> GeneratedTask | None:
        return await self.tasks.get_task(task_id)

    async def mark_complete(self, task_id: str) -> bool:
        updated = await self.tasks.mark_complete(task_id)
        if updated:
            logger.info("task_completed", task_id=task_id)
        return updated

    async def update_task_text(self, task_id: str, text: str) -> bool:
        return await self.tasks.update_task_text(task_id, text)

    async def generation_status(self, project_id: str) -> GenerationStatusResponse:
        """``is_generating`` is true while any stage is IN_PROGRESS."""
        statuses = await self.features.get_stage_statuses(project_id)
        return GenerationStatusResponse(
            is_generating=any(status == StageStatus.IN_PROGRESS for status in statuses.values())
        )
