"""Batching of stage input for the generative backend.

This module provides:
- flatten_file_tree: deterministic ordered file list from a FileNode tree
- parse_structure_tree: FileNode tree from the structure stage's task text
- paginate: cursor for a window over the sorted file list
- BatchSplitter: adaptive divide-and-conquer batching for per-file stages
- run_fixed_chunks: constant-size chunking with a partial-result policy

Fixed chunks skip a chunk whose output cannot be parsed and keep the rest;
any other failure aborts the run. Adaptive batches halve on overload down
to single files; a single-file failure propagates.
"""

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from config import settings
from generation.errors import MalformedOutput, Unavailable
from generation.json_repair import extract_bracketed_json
from models.schemas import FileNode, PaginationCursor

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def flatten_file_tree(tree: Sequence[FileNode]) -> list[FileNode]:
    """Collect the ``file`` nodes of a tree, sorted by ``(order, path)``.

    Folders are descended into; the result is independent of the order in
    which siblings appear in the input.

    Args:
        tree: Top-level nodes

    Returns:
        Files only, in build order
    """
    files: list[FileNode] = []

    def visit(nodes: Sequence[FileNode]) -> None:
        for node in nodes:
            if node.type == "file":
                files.append(node)
            elif node.children:
                visit(node.children)

    visit(tree)
    return sorted(files, key=lambda node: (node.order, node.resolved_path))


def parse_structure_tree(text: str) -> list[FileNode]:
    """Read the ``{"tree": [...]}`` JSON embedded in a structure task.

    The JSON may be surrounded by instructions, so it is located by bracket
    search.

    Raises:
        MalformedOutput: If no tree can be read from the text
    """
    data = extract_bracketed_json(text)
    if isinstance(data, list):
        raw_nodes: Any = data
    elif isinstance(data, dict):
        raw_nodes = data.get("tree")
    else:
        raw_nodes = None

    if not isinstance(raw_nodes, list):
        raise MalformedOutput("Structure output has no 'tree' list", raw_text=text)

    try:
        return [FileNode.model_validate(node) for node in raw_nodes if isinstance(node, dict)]
    except ValidationError as e:
        raise MalformedOutput(f"Invalid file node in structure output: {e}", raw_text=text) from e


def paginate(total: int, offset: int, limit: int) -> PaginationCursor:
    """Compute the cursor for the window ``[offset, offset + limit)``."""
    return PaginationCursor(
        offset=offset,
        limit=limit,
        total=total,
        next_offset=min(offset + limit, total),
        is_complete=offset + limit >= total,
    )


class BatchSplitter:
    """Adaptive recursive batching over an ordered file list.

    Batches larger than ``target_size`` are split before any call is made.
    A batch of ``n > 1`` files that fails with ``Unavailable`` is halved and
    each half retried; a single file that fails propagates. With halving,
    ``N`` files need at most ``2N - 1`` calls.

    Attributes:
        generate: Coroutine producing results for one batch
        target_size: Largest batch sent in one call
    """

    def __init__(
        self,
        generate: Callable[[list[FileNode]], Awaitable[list[Any]]],
        target_size: int | None = None,
    ) -> None:
        self.generate = generate
        self.target_size = target_size if target_size is not None else settings.adaptive_batch_size
        if self.target_size < 1:
            raise ValueError("target_size must be at least 1")

    async def run(self, files: Sequence[FileNode]) -> list[Any]:
        """Generate results for ``files``, preserving input order."""
        if not files:
            return []

        if len(files) > self.target_size:
            head = list(files[: self.target_size])
            tail = list(files[self.target_size :])
            return [*await self.run(head), *await self.run(tail)]

        batch = list(files)
        try:
            return list(await self.generate(batch))
        except Unavailable as e:
            if len(batch) == 1:
                logger.error(
                    "single_file_batch_failed",
                    path=batch[0].resolved_path,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

            mid = (len(batch) + 1) // 2
            logger.warning(
                "batch_overloaded_splitting",
                batch_size=len(batch),
                left=mid,
                right=len(batch) - mid,
                error_type=type(e).__name__,
            )
            return [*await self.run(batch[:mid]), *await self.run(batch[mid:])]


async def run_fixed_chunks(
    items: Sequence[T],
    size: int,
    generate_chunk: Callable[[list[T]], Awaitable[list[R]]],
) -> list[R]:
    """Process ``items`` in chunks of ``size``, skipping chunks that fail to parse.

    Chunks run strictly in order. A chunk whose output is malformed even after
    repair is logged and omitted from the result. Every other error, overload
    after retries included, propagates and aborts the run.

    Args:
        items: Input items
        size: Items per chunk
        generate_chunk: Coroutine producing results for one chunk

    Returns:
        Concatenated results of the successful chunks
    """
    if size < 1:
        raise ValueError("size must be at least 1")

    results: list[R] = []
    chunk_count = (len(items) + size - 1) // size
    for index, start in enumerate(range(0, len(items), size)):
        chunk = list(items[start : start + size])
        try:
            produced = await generate_chunk(chunk)
        except MalformedOutput as e:
            logger.warning(
                "chunk_skipped",
                chunk_index=index,
                chunk_count=chunk_count,
                chunk_size=len(chunk),
                error_type=type(e).__name__,
                error=str(e),
            )
            continue
        results.extend(produced)

    logger.info("fixed_chunks_complete", chunk_count=chunk_count, results=len(results))
    return results
