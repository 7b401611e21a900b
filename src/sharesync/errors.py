"""Exceptions raised by the share ingestion engine."""


class SharesyncError(Exception):
    """Base class for all sharesync errors."""


class NoCredential(SharesyncError):
    """No 115 session cookie is available for the requested owner."""


class RemoteError(SharesyncError):
    """Base class for failures talking to the remote provider."""


class RemoteUnavailable(RemoteError):
    """Transport error, timeout or 5xx from the provider. Retryable."""


class RemoteRejected(RemoteError):
    """The provider returned a structured refusal (bad cookie, quota, duplicate...)."""

    def __init__(self, message: str, errno: int | str | None = None):
        super().__init__(message)
        self.errno = errno


class ShareInvalid(RemoteRejected):
    """The share code/password pair does not resolve, or the share expired."""


class EmptyShare(SharesyncError):
    """The share is reachable but the selection of files to import is empty."""


class PathSegmentNotFound(SharesyncError):
    """A path segment is missing and the resolver is in lookup-only mode."""

    def __init__(self, segment: str, parent: str):
        super().__init__(f"Folder {segment!r} not found under {parent}")
        self.segment = segment
        self.parent = parent


class AlreadyMonitored(SharesyncError):
    """A monitor task already exists for this share code."""

    def __init__(self, share_code: str):
        super().__init__(f"Share {share_code} is already monitored")
        self.share_code = share_code
