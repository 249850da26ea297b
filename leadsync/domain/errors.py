"""
Domain Errors
Exception taxonomy shared by the queue, poller and lead sync service
"""


class StoreError(Exception):
    """Raised when the backing key-value store fails (not a handler error)."""
    pass


class StoreLimitExceededError(StoreError):
    """Raised when the backing store reports an exhausted request quota."""

    # Upstash returns this text once the plan's request budget is spent
    SIGNATURE = "max requests limit exceeded"

    @classmethod
    def matches(cls, error: BaseException) -> bool:
        return cls.SIGNATURE in str(error).lower()


class JobQueueError(Exception):
    """Raised for misuse of the job queue (bad job type, bad options)."""
    pass


class NonRetryableJobError(Exception):
    """Raised by a handler when retrying the job cannot succeed."""
    pass


class EventSourceError(Exception):
    """Raised when a tenant's event source query fails."""
    pass


class CursorStoreError(Exception):
    """Raised when poller state cannot be persisted."""
    pass


class CredentialDecryptionError(Exception):
    """Raised when stored tenant credentials cannot be decrypted."""
    pass


class ComplianceError(Exception):
    """Raised when the compliance provider call fails."""
    def __init__(self, message: str, status_code: int = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)
