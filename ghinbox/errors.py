from __future__ import annotations


class GhinboxError(Exception):
    """Base class for every error surfaced by ghinbox."""


class NoCredentialError(GhinboxError):
    def __init__(self, message: str = "no GitHub token configured") -> None:
        super().__init__(message)


class InvalidURLError(GhinboxError):
    pass


class NetworkFailure(GhinboxError):
    pass


class ApiError(GhinboxError):
    def __init__(self, status: int, detail: str | None = None) -> None:
        self.status = status
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"GitHub API returned {status}{suffix}")


class DecodeFailure(GhinboxError):
    pass


class StoreFailure(GhinboxError):
    pass
