from typing import Optional


class VocabError(Exception):
    """Base class for errors raised by the vocabulary store and job queue."""


class NotFound(VocabError, LookupError):
    """A Word, Sentence or GenerationJob id does not exist."""

    def __init__(self, kind: str, item_id: int):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} with ID {item_id} not found")


class InvalidTransition(VocabError):
    """A generation job was asked to move along an edge its state machine forbids."""

    def __init__(self, job_id: int, current: str, attempted: str):
        self.job_id = job_id
        self.current = current
        self.attempted = attempted
        super().__init__(f"Job {job_id} cannot go from '{current}' to '{attempted}'")


class GenerationFailure(VocabError):
    """Raised by content or audio generators."""

    def __init__(self, message: str, word: Optional[str] = None):
        self.word = word
        super().__init__(message)


class TransientGenerationFailure(GenerationFailure):
    """Recoverable: the worker should reschedule the job with a backoff."""


class PermanentGenerationFailure(GenerationFailure):
    """Not worth retrying: the worker should fail the job."""
