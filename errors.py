# errors.py
from typing import Iterable, List


class ExportError(Exception):
    """Base for every failure that aborts an export run."""

    stage = "export"


class ConfigurationError(ExportError):
    stage = "config"

    def __init__(self, missing: Iterable[str]):
        self.missing: List[str] = list(missing)
        super().__init__(
            "Missing required environment variables: " + ", ".join(self.missing)
        )


class NotFoundError(ExportError):
    stage = "resolve"


class MissingDataError(ExportError):
    stage = "resolve"


class UpstreamQueryError(ExportError):
    stage = "resolve"


class CompositionResolutionError(ExportError):
    stage = "render"


class RenderEngineError(ExportError):
    stage = "render"


class UploadError(ExportError):
    stage = "upload"


class StatusUpdateError(ExportError):
    """A status write failed; `stage` is set per call (processing/complete/failed)."""

    def __init__(self, message: str, stage: str = "status"):
        super().__init__(message)
        self.stage = stage
