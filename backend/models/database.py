"""SQLite-based project persistence using aiosqlite.

This module provides the ProjectStore class, which implements every
collaborator interface the generation engine consumes (see
``models.interfaces``): feature outputs and stage status, the structure
artifact, generated tasks, prompt configs, the runtime model record and
per-caller credentials.

Tables:
    project_features: Feature outputs, user input and the stage-status map.
    generated_tasks: Ordered coding tasks, replaced wholesale per stage.
    generator_configs: Prompt templates per sub-generator.
    server_configurations: Operator-editable runtime records.
    caller_credentials: Backend API keys per caller.

Write failures are logged and re-raised: a half-written plan must be
visible to the caller.

Usage:
    >>> from models.database import ProjectStore
    >>> store = ProjectStore("./data/planforge.db")
    >>> await store.init(generator_configs=DEFAULT_GENERATOR_CONFIGS)
    >>> await store.set_stage_status("proj_1", "execute_coding.stage1", StageStatus.IN_PROGRESS)
"""

import json
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from generation.batching import parse_structure_tree
from generation.stages import PIPELINE_FEATURE_KEY
from models.schemas import (
    FileNode,
    GeneratedTask,
    GeneratorConfig,
    StageStatus,
    TaskStatus,
)

logger = structlog.get_logger(__name__)

FEATURE_COMPLETE_MARKER = "COMPLETED"


def _row_to_task(row: aiosqlite.Row) -> GeneratedTask:
    return GeneratedTask(
        id=row["id"],
        project_id=row["project_id"],
        stage=row["stage"],
        sequence=row["sequence"],
        title=row["title"],
        text=row["text"],
        status=TaskStatus(row["status"]),
        created_at=row["created_at"],
    )


def _load_json(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("stored_json_invalid", preview=raw[:80])
        return None


class ProjectStore:
    """Async SQLite store for build-plan generation state.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the project store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def init(
        self,
        generator_configs: Iterable[GeneratorConfig] = (),
        runtime_defaults: dict[str, str] | None = None,
    ) -> None:
        """Create tables if they do not exist and seed defaults.

        Seeding is insert-or-ignore, so rows edited by operators survive
        restarts.

        Args:
            generator_configs: Default prompt templates.
            runtime_defaults: Default runtime records (e.g. the model name).
        """
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        now = time.time()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS project_features (
                        project_id TEXT NOT NULL,
                        feature_key TEXT NOT NULL,
                        generated_output TEXT,
                        user_input TEXT,
                        stage_status TEXT,
                        updated_at REAL NOT NULL,
                        PRIMARY KEY (project_id, feature_key)
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS generated_tasks (
                        id TEXT PRIMARY KEY,
                        project_id TEXT NOT NULL,
                        stage TEXT NOT NULL,
                        sequence INTEGER NOT NULL,
                        title TEXT NOT NULL,
                        text TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'PENDING',
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_tasks_project_stage
                    ON generated_tasks(project_id, stage, sequence)
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS generator_configs (
                        key TEXT PRIMARY KEY,
                        system_template TEXT NOT NULL,
                        user_template TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS server_configurations (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS caller_credentials (
                        caller_id TEXT PRIMARY KEY,
                        api_key TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.executemany(
                    """
                    INSERT OR IGNORE INTO generator_configs
                        (key, system_template, user_template, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (c.key, c.system_template, c.user_template, now)
                        for c in generator_configs
                    ],
                )
                await db.executemany(
                    """
                    INSERT OR IGNORE INTO server_configurations (key, value, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    [(k, v, now) for k, v in (runtime_defaults or {}).items()],
                )
                await db.commit()
            logger.info("project_store_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "project_store_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    # -----------------------------------------------------------------
    # Features & stage status
    # -----------------------------------------------------------------

    async def save_feature(
        self,
        project_id: str,
        feature_key: str,
        generated_output: str | None = None,
        user_input: dict[str, Any] | None = None,
    ) -> None:
        """Insert or update a feature's output and/or user input.

        Fields passed as None keep their stored value.
        """
        user_input_json = json.dumps(user_input) if user_input is not None else None
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO project_features
                        (project_id, feature_key, generated_output, user_input, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(project_id, feature_key) DO UPDATE SET
                        generated_output = COALESCE(excluded.generated_output, generated_output),
                        user_input = COALESCE(excluded.user_input, user_input),
                        updated_at = excluded.updated_at
                    """,
                    (project_id, feature_key, generated_output, user_input_json, time.time()),
                )
                await db.commit()
            logger.debug("feature_saved", project_id=project_id, feature_key=feature_key)
        except Exception as e:
            logger.error(
                "feature_save_failed",
                project_id=project_id,
                feature_key=feature_key,
                error=str(e),
            )
            raise

    async def get_feature_output(self, project_id: str, feature_key: str) -> str | None:
        """Return a feature's output text.

        For ``tech_choices`` the user-selected stack (``user_input.selected_stack``)
        wins over the generated analysis.
        """
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT generated_output, user_input FROM project_features
                WHERE project_id = ? AND feature_key = ?
                """,
                (project_id, feature_key),
            )
            row = await cursor.fetchone()

        if row is None:
            return None

        if feature_key == "tech_choices":
            user_input = _load_json(row["user_input"])
            if isinstance(user_input, dict) and user_input.get("selected_stack"):
                return json.dumps(user_input["selected_stack"], indent=2)

        return row["generated_output"]

    async def set_feature_output(self, project_id: str, feature_key: str, output: str) -> None:
        """Store a feature's output text."""
        await self.save_feature(project_id, feature_key, generated_output=output)

    async def set_stage_status(
        self,
        project_id: str,
        stage_key: str,
        status: StageStatus,
    ) -> None:
        """Record one stage's status on the pipeline feature record.

        The status map is read and rewritten in one connection.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    """
                    SELECT stage_status FROM project_features
                    WHERE project_id = ? AND feature_key = ?
                    """,
                    (project_id, PIPELINE_FEATURE_KEY),
                )
                row = await cursor.fetchone()
                current = _load_json(row["stage_status"]) if row else None
                merged: dict[str, str] = current if isinstance(current, dict) else {}
                merged[str(stage_key)] = str(status)

                await db.execute(
                    """
                    INSERT INTO project_features
                        (project_id, feature_key, stage_status, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(project_id, feature_key) DO UPDATE SET
                        stage_status = excluded.stage_status,
                        updated_at = excluded.updated_at
                    """,
                    (project_id, PIPELINE_FEATURE_KEY, json.dumps(merged), time.time()),
                )
                await db.commit()
            logger.debug(
                "stage_status_updated",
                project_id=project_id,
                stage=str(stage_key),
                status=str(status),
            )
        except Exception as e:
            logger.error(
                "stage_status_update_failed",
                project_id=project_id,
                error=str(e),
            )
            raise

    async def get_stage_statuses(self, project_id: str) -> dict[str, StageStatus]:
        """Return the stage-status map (empty if nothing was recorded)."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT stage_status FROM project_features
                WHERE project_id = ? AND feature_key = ?
                """,
                (project_id, PIPELINE_FEATURE_KEY),
            )
            row = await cursor.fetchone()

        raw = _load_json(row["stage_status"]) if row else None
        if not isinstance(raw, dict):
            return {}

        statuses: dict[str, StageStatus] = {}
        for key, value in raw.items():
            try:
                statuses[key] = StageStatus(value)
            except ValueError:
                logger.warning("invalid_persisted_stage_status", stage=key, status=value)
        return statuses

    async def set_feature_complete(self, project_id: str, complete: bool) -> None:
        """Set or clear the aggregate pipeline completion flag."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO project_features
                        (project_id, feature_key, generated_output, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(project_id, feature_key) DO UPDATE SET
                        generated_output = excluded.generated_output,
                        updated_at = excluded.updated_at
                    """,
                    (
                        project_id,
                        PIPELINE_FEATURE_KEY,
                        FEATURE_COMPLETE_MARKER if complete else None,
                        time.time(),
                    ),
                )
                await db.commit()
        except Exception as e:
            logger.error(
                "feature_complete_update_failed",
                project_id=project_id,
                error=str(e),
            )
            raise

    async def is_feature_complete(self, project_id: str) -> bool:
        output = await self.get_feature_output(project_id, PIPELINE_FEATURE_KEY)
        return output == FEATURE_COMPLETE_MARKER

    # -----------------------------------------------------------------
    # Structure artifact
    # -----------------------------------------------------------------

    async def get_structure_tree(self, project_id: str, stage_key: str) -> list[FileNode] | None:
        """Read the file tree embedded in a structure stage's first task.

        The stored task text is used rather than the raw model output, so
        manual edits to the skeleton task are honoured.

        Returns:
            The tree, or None if the stage has no stored task.

        Raises:
            MalformedOutput: If the task text holds no readable tree.
        """
        tasks = await self.list_tasks(project_id, stage_key)
        if not tasks:
            return None
        return parse_structure_tree(tasks[0].text)

    # -----------------------------------------------------------------
    # Tasks
    # -----------------------------------------------------------------

    async def delete_tasks(self, project_id: str, stage_key: str | None = None) -> int:
        """Delete a stage's tasks (or all of a project's tasks).

        Returns:
            Number of rows removed.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                if stage_key is None:
                    cursor = await db.execute(
                        "DELETE FROM generated_tasks WHERE project_id = ?",
                        (project_id,),
                    )
                else:
                    cursor = await db.execute(
                        "DELETE FROM generated_tasks WHERE project_id = ? AND stage = ?",
                        (project_id, stage_key),
                    )
                deleted = cursor.rowcount
                await db.commit()
            logger.debug(
                "tasks_deleted",
                project_id=project_id,
                stage=stage_key,
                deleted=deleted,
            )
            return deleted
        except Exception as e:
            logger.error(
                "tasks_delete_failed",
                project_id=project_id,
                stage=stage_key,
                error=str(e),
            )
            raise

    async def insert_tasks(self, tasks: list[GeneratedTask]) -> None:
        """Insert tasks with their pre-assigned ids."""
        if not tasks:
            return
        now = time.time()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executemany(
                    """
                    INSERT INTO generated_tasks
                        (id, project_id, stage, sequence, title, text, status,
                         created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            t.id,
                            t.project_id,
                            str(t.stage),
                            t.sequence,
                            t.title,
                            t.text,
                            str(t.status),
                            t.created_at,
                            now,
                        )
                        for t in tasks
                    ],
                )
                await db.commit()
            logger.debug("tasks_inserted", count=len(tasks), stage=tasks[0].stage)
        except Exception as e:
            logger.error(
                "tasks_insert_failed",
                count=len(tasks),
                error=str(e),
            )
            raise

    async def list_tasks(
        self,
        project_id: str,
        stage_key: str | None = None,
    ) -> list[GeneratedTask]:
        """List tasks ordered by sequence."""
        query = "SELECT * FROM generated_tasks WHERE project_id = ?"
        params: tuple[Any, ...] = (project_id,)
        if stage_key is not None:
            query += " AND stage = ?"
            params = (project_id, stage_key)
        query += " ORDER BY sequence ASC, created_at ASC"

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [_row_to_task(row) for row in rows]

    async def get_task(self, task_id: str) -> GeneratedTask | None:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM generated_tasks WHERE id = ?",
                (task_id,),
            )
            row = await cursor.fetchone()
        return _row_to_task(row) if row else None

    async def list_pending_tasks(self, project_id: str, limit: int) -> list[GeneratedTask]:
        """Tasks not yet completed, in sequence order."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT * FROM generated_tasks
                WHERE project_id = ? AND status != ?
                ORDER BY sequence ASC, created_at ASC
                LIMIT ?
                """,
                (project_id, str(TaskStatus.COMPLETED), limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_task(row) for row in rows]

    async def update_task_text(self, task_id: str, text: str) -> bool:
        """Replace a task's text. Returns False if the task does not exist."""
        return await self._update_task(task_id, "text", text)

    async def mark_complete(self, task_id: str) -> bool:
        """Mark a task COMPLETED. Returns False if the task does not exist."""
        return await self._update_task(task_id, "status", str(TaskStatus.COMPLETED))

    async def _update_task(self, task_id: str, column: str, value: str) -> bool:
        if column not in ("text", "status"):
            raise ValueError(f"Unsupported task column: {column}")
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    f"UPDATE generated_tasks SET {column} = ?, updated_at = ? WHERE id = ?",
                    (value, time.time(), task_id),
                )
                updated = cursor.rowcount > 0
                await db.commit()
            logger.debug("task_updated", task_id=task_id, column=column, updated=updated)
            return updated
        except Exception as e:
            logger.error(
                "task_update_failed",
                task_id=task_id,
                column=column,
                error=str(e),
            )
            raise

    # -----------------------------------------------------------------
    # Prompt configs
    # -----------------------------------------------------------------

    async def get_generator_config(self, key: str) -> GeneratorConfig | None:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM generator_configs WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return GeneratorConfig(
            key=row["key"],
            system_template=row["system_template"],
            user_template=row["user_template"],
        )

    async def save_generator_config(self, config: GeneratorConfig) -> None:
        """Insert or replace a sub-generator's templates."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO generator_configs
                    (key, system_template, user_template, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (config.key, config.system_template, config.user_template, time.time()),
            )
            await db.commit()
        logger.info("generator_config_saved", key=config.key)

    # -----------------------------------------------------------------
    # Runtime configuration & credentials
    # -----------------------------------------------------------------

    async def get_runtime_value(self, key: str) -> str | None:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT value FROM server_configurations WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set_runtime_value(self, key: str, value: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO server_configurations (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                (key, value, time.time()),
            )
            await db.commit()
        logger.info("runtime_value_updated", key=key)

    async def get_api_key(self, caller_id: str) -> str | None:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT api_key FROM caller_credentials WHERE caller_id = ?",
                (caller_id,),
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set_api_key(self, caller_id: str, api_key: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR REPLACE INTO caller_credentials (caller_id, api_key, updated_at)
                VALUES (?, ?, ?)
                """,
                (caller_id, api_key, time.time()),
            )
            await db.commit()
        logger.info("caller_credential_updated", caller_id=caller_id)
