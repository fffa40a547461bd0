"""
Exception hierarchy for the EPG pipeline.

Per-source errors (download, parse) are logged and the source is skipped.
StorageError and WorkerPoolError make a rebuild fall back to the in-memory path.
"""


class EPGError(Exception):
    """Base class for EPG pipeline errors"""


class SourceDownloadError(EPGError):
    """Raised when a source cannot be downloaded or read"""


class EPGParseError(EPGError):
    """Raised when a document is not well-formed XMLTV"""


class StorageError(EPGError):
    """Raised when the persistent store fails a read or write"""


class WorkerPoolError(EPGError):
    """Raised when a normalization task fails and voids the join"""

    def __init__(self, message: str, failed_chunks: list[int] | None = None):
        super().__init__(message)
        self.failed_chunks = failed_chunks or []
