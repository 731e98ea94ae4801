"""Errors surfaced to callers of the queue, job and schedule services.

Handler failures are not listed here: they are recorded on the job and go
through the retry policy instead of being raised.
"""

class JobEngineError(Exception):
    """Base class for all engine errors."""

class NotFound(JobEngineError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = ident

class AlreadyExists(JobEngineError):
    pass

class InvalidState(JobEngineError):
    pass

class StateConflict(InvalidState):
    """A conditional status update lost to a concurrent writer."""

class InvalidSchedule(JobEngineError):
    pass
