"""Error taxonomy shared by every pipeline.

Background cases turn these into board writes; synchronous HTTP steps map them
to status codes in ``app.server``.
"""

from typing import Optional


class PipelineError(RuntimeError):
    """Base class for all expected pipeline failures."""


class ConfigurationError(PipelineError):
    """A required credential or endpoint is missing."""


class SourceFetchError(PipelineError):
    """An upstream content source was unavailable or returned unusable data."""


class GenerationError(PipelineError):
    """The article generation service failed."""


class GenerationTimeoutError(GenerationError):
    """The article generation service did not answer within the hard timeout."""


class GenerationHttpError(GenerationError):
    """The article generation service answered with a non-2xx status."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")


class JudgmentParseError(PipelineError):
    """The judgment model produced output that could not be parsed."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        self.raw = raw
        super().__init__(message)


class BoardError(PipelineError):
    """A board API call failed."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class BoardWriteError(BoardError):
    """A board mutation (create, move, update, comment, attach) failed."""


class NotFoundError(BoardError):
    """The referenced card does not exist."""


class InvalidLaneError(BoardError):
    """The referenced lane does not exist."""


class CardStateError(PipelineError):
    """The card-state envelope embedded in a card body could not be decoded."""


class TerminalStateError(PipelineError):
    """A review case in a terminal status was asked to change."""
