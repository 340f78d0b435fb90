"""
Error taxonomy for the analysis and scheduling core.

A detector that ran but found nothing to report does not raise: it returns
None ("no estimate"). Exceptions are reserved for inputs a detector cannot
run on and for resources that could not be acquired.
"""


class RiffscopeError(Exception):
    """Base class for all riffscope errors."""


class EmptyInputError(RiffscopeError):
    """Raised when a detector is handed a zero-length sample buffer."""

    def __init__(self, detector: str = "detector"):
        super().__init__(f"{detector} received an empty sample buffer")
        self.detector = detector


class BufferUnavailableError(RiffscopeError):
    """Raised when working storage for an analysis cannot be allocated."""


class SchedulerSetupError(RiffscopeError):
    """Raised when the beat scheduler cannot acquire its audio output.

    The scheduler is left idle and the setup is never retried automatically.
    """
