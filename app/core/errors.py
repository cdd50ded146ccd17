"""Domain errors shared by services and routes.

Each error carries the HTTP status the API layer maps it to; services raise
them without knowing about HTTP.
"""

from __future__ import annotations

from typing import List, Sequence


class LiveDropError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(LiveDropError):
    status_code = 400
    code = "invalid_request"


class PermissionDenied(LiveDropError):
    status_code = 403
    code = "forbidden"


class NotFoundError(LiveDropError):
    """Referenced event or photo does not exist."""

    status_code = 404
    code = "not_found"


class NoPhotosFoundError(NotFoundError):
    """A download filter resolved to zero photos."""

    code = "no_photos_found"


class NoContentError(LiveDropError):
    """Every blob fetch of an archive build failed."""

    status_code = 500
    code = "no_content"


class PartialFetchFailure(LiveDropError):
    """Some blob fetches failed; informational only, never raised to clients."""

    code = "partial_fetch_failure"

    def __init__(self, failed_ids: Sequence[str], requested: int):
        self.failed_ids: List[str] = list(failed_ids)
        self.requested = requested
        super().__init__(
            f"{len(self.failed_ids)} of {requested} photos could not be fetched"
        )

    @property
    def included(self) -> int:
        return self.requested - len(self.failed_ids)


class TransientNetworkError(LiveDropError):
    """Feed disconnects, poll failures and telemetry failures. Logged, never surfaced."""

    status_code = 503
    code = "transient"


class StorageError(LiveDropError):
    """Object store call failed for a reason other than a missing key."""

    code = "storage_error"


class ObjectNotFound(StorageError):
    status_code = 404
    code = "object_not_found"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"object not found: {key}")
