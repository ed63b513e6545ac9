from __future__ import annotations


class UploadError(Exception):
    """Base class for failures surfaced by the upload pipeline."""

    retryable = False

    @property
    def kind(self) -> str:
        return type(self).__name__


class TransportError(UploadError):
    """Connection refused, DNS failure or timeout."""

    retryable = True


class CredentialDenied(UploadError):
    pass


class CommitRejected(UploadError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FinalizeFailed(UploadError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnexpectedStatus(UploadError):
    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MediaFileError(UploadError):
    """A media file is missing, empty or unreadable."""


class UnexpectedFailure(UploadError):
    """An error from outside this taxonomy, recorded with its original type."""


class InvalidBlockTransition(ValueError):
    pass
