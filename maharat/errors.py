from __future__ import annotations


class PlatformError(Exception):
    """Base class for failures scoped to a single user action."""


class AuthError(PlatformError):
    pass


class InvalidCredentials(AuthError):
    pass


class EmailInUse(AuthError):
    pass


class TeacherAlreadyExists(PlatformError):
    """Raised when a second teacher account is requested."""


class IndexNotReady(PlatformError):
    """The store cannot serve a query because its composite index is still building."""

    def __init__(self, index_name: str, message: str | None = None) -> None:
        super().__init__(message or f'Index {index_name} is not ready')
        self.index_name = index_name


class NotFound(PlatformError):
    pass


class ValidationError(PlatformError, ValueError):
    pass


class StoreUnavailable(PlatformError):
    pass


class MassSendPartialFailure(PlatformError):
    def __init__(self, sent: dict[str, str], failed: dict[str, str]) -> None:
        super().__init__(f'Message could not be delivered to {len(failed)} recipient(s)')
        self.sent = sent
        self.failed = failed

    @property
    def failed_ids(self) -> list[str]:
        return sorted(self.failed)
