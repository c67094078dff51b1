"""Exception types shared by the sync pipeline."""

from typing import List, Optional


class CredscoreError(Exception):
    """Base class for credscore errors."""


class ProviderError(CredscoreError):
    """An upstream provider call failed.

    `transient` marks failures worth retrying (network, 5xx, rate limits).
    """

    def __init__(self, message: str, status: Optional[int] = None, transient: bool = False):
        super().__init__(message)
        self.status = status
        self.transient = transient


class ValidationFailed(CredscoreError):
    """A submitted record was rejected before persistence."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class UnknownJobTypeError(CredscoreError):
    """No handler is registered for a job type. Never retried."""


class DuplicateJobError(CredscoreError):
    """A job for the same (user, source) pair is already in flight."""

    def __init__(self, message: str, existing_job_id: Optional[str] = None):
        super().__init__(message)
        self.existing_job_id = existing_job_id


class JobNotFoundError(CredscoreError):
    pass


class InvalidJobStateError(CredscoreError):
    pass
