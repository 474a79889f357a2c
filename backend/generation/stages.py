"""Static catalog of build-plan stages.

Stages form a closed set (``StageKey``); every key has exactly one
``StageDefinition`` in ``STAGE_CATALOG``. Lookups of arbitrary strings go
through ``get_stage``, which raises ``UnknownStage`` instead of silently
returning an empty generator list.
"""

from dataclasses import dataclass
from enum import Enum, StrEnum

from generation.errors import UnknownStage

# Feature record that carries stage status and the aggregate completion flag
PIPELINE_FEATURE_KEY = "execute_coding"
# Feature output holding the env stage's recommended variables (JSON)
ENV_FEATURE_KEY = "execute_coding.env"


class StageKey(StrEnum):
    """Identifiers of every stage in the pipeline."""

    CHECK = "execute_coding.check"
    ENV = "execute_coding.stage1"
    STRUCTURE = "execute_coding.stage2"
    FILES = "execute_coding.stage3"
    API_WIRING = "execute_coding.stage4"


class BatchPolicy(Enum):
    """How a stage feeds its input to the backend."""

    SINGLE_SHOT = "single_shot"
    FIXED_CHUNKS = "fixed_chunks"
    ADAPTIVE = "adaptive"


@dataclass(frozen=True)
class StageDefinition:
    """Immutable description of one stage.

    Attributes:
        key: Stage identifier
        order: Position in the pipeline; strictly increasing across stages
        sub_generators: Generator config keys, run in this order
        policy: Input batching policy
        requires: Stage whose structural artifact must already exist
        chunk_source: Feature whose JSON list feeds fixed-size chunks
        chunk_field: Field of that JSON object holding the list
    """

    key: StageKey
    order: int
    sub_generators: tuple[str, ...]
    policy: BatchPolicy = BatchPolicy.SINGLE_SHOT
    requires: StageKey | None = None
    chunk_source: str | None = None
    chunk_field: str | None = None

    def sequence_for(self, index: int) -> int:
        """Global ordering value of the ``index``-th task of this stage."""
        return self.order * 1000 + index


STAGE_CATALOG: dict[StageKey, StageDefinition] = {
    StageKey.CHECK: StageDefinition(
        key=StageKey.CHECK,
        order=0,
        sub_generators=("execute_coding.check",),
    ),
    StageKey.ENV: StageDefinition(
        key=StageKey.ENV,
        order=1,
        sub_generators=("execute_coding.stage1.env",),
    ),
    StageKey.STRUCTURE: StageDefinition(
        key=StageKey.STRUCTURE,
        order=2,
        sub_generators=("execute_coding.stage2.structure",),
    ),
    StageKey.FILES: StageDefinition(
        key=StageKey.FILES,
        order=3,
        sub_generators=("execute_coding.stage3.batch",),
        policy=BatchPolicy.ADAPTIVE,
        requires=StageKey.STRUCTURE,
    ),
    StageKey.API_WIRING: StageDefinition(
        key=StageKey.API_WIRING,
        order=4,
        sub_generators=("execute_coding.stage4.apis",),
        policy=BatchPolicy.FIXED_CHUNKS,
        chunk_source="apis",
        chunk_field="apis",
    ),
}


def get_stage(key: str) -> StageDefinition:
    """Resolve a stage key string.

    Raises:
        UnknownStage: If ``key`` is not a catalog stage
    """
    try:
        return STAGE_CATALOG[StageKey(key)]
    except ValueError:
        raise UnknownStage(f"No generators for stage: {key}") from None


def ordered_stages() -> list[StageDefinition]:
    """All stages in pipeline order."""
    return sorted(STAGE_CATALOG.values(), key=lambda s: s.order)


def terminal_stage() -> StageDefinition:
    """The last stage; completing it completes the whole pipeline."""
    return ordered_stages()[-1]
