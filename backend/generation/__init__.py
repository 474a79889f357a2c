"""Staged build-plan generation against an unreliable generative backend.

This module exports the components that turn a project's design artifacts
into an ordered list of coding tasks:
- ContentClient / ClientRegistry: single backend calls, per-caller handles
- RetryingClient: retries with backoff and prompt shrinking
- JsonRepair: typed parsing with a single repair fallback
- Stage catalog and batching policies
- StageOrchestrator: drives one stage invocation to completion
"""

from generation.batching import BatchSplitter, flatten_file_tree, paginate, run_fixed_chunks
from generation.client import BackendHandle, ClientRegistry, ContentClient
from generation.errors import (
    GenerationError,
    GenerationTimeout,
    InvalidCredential,
    MalformedOutput,
    MissingCredential,
    MissingPrerequisite,
    QuotaExceeded,
    Unavailable,
    UnknownStage,
    Unrepairable,
)
from generation.json_repair import JsonRepair, extract_bracketed_json
from generation.orchestrator import StageOrchestrator
from generation.prompts import DEFAULT_GENERATOR_CONFIGS
from generation.retry import RetryingClient, shrink_prompt
from generation.stages import (
    PIPELINE_FEATURE_KEY,
    STAGE_CATALOG,
    BatchPolicy,
    StageDefinition,
    StageKey,
    get_stage,
)

__all__ = [
    # Client
    "BackendHandle",
    "ClientRegistry",
    "ContentClient",
    "RetryingClient",
    "shrink_prompt",
    "JsonRepair",
    "extract_bracketed_json",
    # Errors
    "GenerationError",
    "GenerationTimeout",
    "InvalidCredential",
    "MalformedOutput",
    "MissingCredential",
    "MissingPrerequisite",
    "QuotaExceeded",
    "Unavailable",
    "UnknownStage",
    "Unrepairable",
    # Stages
    "PIPELINE_FEATURE_KEY",
    "STAGE_CATALOG",
    "BatchPolicy",
    "StageDefinition",
    "StageKey",
    "get_stage",
    "DEFAULT_GENERATOR_CONFIGS",
    # Batching
    "BatchSplitter",
    "flatten_file_tree",
    "paginate",
    "run_fixed_chunks",
    # Orchestration
    "StageOrchestrator",
]
