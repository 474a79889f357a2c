"""Error taxonomy for build-plan generation.

Backend SDK exceptions are translated into these types at the
``ContentClient`` boundary so the rest of the engine never depends on
provider-specific error classes.
"""


class GenerationError(Exception):
    """Base class for all generation failures."""


class Unavailable(GenerationError):
    """The backend is overloaded or rate limited. Retried, then surfaced."""


class QuotaExceeded(Unavailable):
    """The caller's backend quota is exhausted (429-class)."""


class GenerationTimeout(Unavailable):
    """No response arrived before the deadline. Retried like an overload."""


class InvalidCredential(GenerationError):
    """The caller's stored API key was rejected. Fatal, never retried."""


class MissingCredential(InvalidCredential):
    """The caller has no stored API key."""


class MalformedOutput(GenerationError):
    """The response is not valid JSON where JSON was expected."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class Unrepairable(MalformedOutput):
    """The repair attempt itself did not yield parseable JSON."""


class MissingPrerequisite(GenerationError):
    """A structural artifact the stage strictly requires is absent."""


class UnknownStage(GenerationError):
    """The requested stage key is not part of the catalog."""
