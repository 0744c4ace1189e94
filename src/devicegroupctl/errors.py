"""Exception hierarchy shared by the directory collaborators."""
from __future__ import annotations


class DeviceGroupError(RuntimeError):
    """Base class for errors raised by devicegroupctl."""


class DependencyError(DeviceGroupError):
    """Raised when a required collaborator (library, credential, session) is unavailable."""


class SelectorError(DeviceGroupError, ValueError):
    """Raised when device selection inputs are missing or conflicting."""


class DirectoryError(DeviceGroupError):
    """Raised when a directory query or mutation fails on the backing service."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.detail = detail

    def describe(self) -> str:
        """Return a one-line explanation including the service error detail."""
        parts = [str(self)]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.code:
            parts.append(f"code={self.code}")
        if self.detail:
            parts.append(f"detail={self.detail}")
        return " ".join(parts)


__all__ = ["DependencyError", "DeviceGroupError", "DirectoryError", "SelectorError"]
