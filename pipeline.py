# pipeline.py
# ------------------------------------------------------------------------------------
#  One export run:
#    resolve design (Supabase) -> mark processing -> render (Remotion)
#    -> upload (R2) -> mark completed
#  Stages run strictly in sequence; any failure aborts the run. Nothing is retried.
# ------------------------------------------------------------------------------------

import asyncio
import contextlib
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from errors import (
    CompositionResolutionError,
    MissingDataError,
    NotFoundError,
    RenderEngineError,
    StatusUpdateError,
    UploadError,
    UpstreamQueryError,
)
from job_store import ExportRecord, JobStoreError, SupabaseJobStore
from r2_client import R2Error, R2Storage
from remotion_client import CompositionNotFound, RemotionError, RemotionRenderer
from settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_FPS = 30
DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1080
DEFAULT_FORMAT = "mp4"
DEFAULT_CODEC = "h264"
DEFAULT_EXTENSION = ".mp4"

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
}


class JobAlreadyClaimed(Exception):
    """The conditional queued -> processing write matched no row."""


# ---------- Render parameters ----------

@dataclass(frozen=True)
class RenderOptions:
    fps: int = DEFAULT_FPS
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    format: str = DEFAULT_FORMAT
    codec: str = DEFAULT_CODEC


@dataclass(frozen=True)
class RenderRequest:
    design_payload: Any
    options: RenderOptions

    def input_props(self) -> Dict[str, Any]:
        return {"design": self.design_payload, "options": asdict(self.options)}


def resolve_render_options(
    design: Any,
    *,
    fps: Optional[int] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    format: Optional[str] = None,
    codec: Optional[str] = None,
) -> RenderOptions:
    """
    Values embedded in the design win over caller-supplied ones whenever they
    are present and truthy; caller values in turn win over the built-in defaults.
    """
    if not isinstance(design, dict):
        design = {}
    size = design.get("size") or {}
    if not isinstance(size, dict):
        size = {}
    return RenderOptions(
        fps=design.get("fps") or fps or DEFAULT_FPS,
        width=size.get("width") or width or DEFAULT_WIDTH,
        height=size.get("height") or height or DEFAULT_HEIGHT,
        format=format or DEFAULT_FORMAT,
        codec=codec or DEFAULT_CODEC,
    )


# ---------- Artifact naming ----------

def default_output_path(job_id: str) -> str:
    return os.path.join(tempfile.gettempdir(), f"render-{job_id}-{int(time.time() * 1000)}.mp4")


def _extension(local_path: str) -> str:
    return os.path.splitext(os.path.basename(local_path))[1] or DEFAULT_EXTENSION


def object_key_for(job_id: str, local_path: str) -> str:
    return f"exports/{job_id}{_extension(local_path)}"


def content_type_for(local_path: str) -> str:
    return CONTENT_TYPES.get(_extension(local_path).lower(), "video/mp4")


@dataclass(frozen=True)
class Artifact:
    local_path: str
    object_key: str
    public_url: str


@dataclass(frozen=True)
class ExportResult:
    job_id: str
    artifact: Optional[Artifact] = None
    skipped: bool = False

    @property
    def output_url(self) -> Optional[str]:
        return self.artifact.public_url if self.artifact else None


# ---------- Stages ----------

class JobInputResolver:
    def __init__(self, store):
        self.store = store

    async def resolve(self, job_id: str) -> ExportRecord:
        logger.info("Fetching design data for export %s", job_id)
        try:
            rows = await self.store.fetch(job_id)
        except JobStoreError as e:
            raise UpstreamQueryError(f"Failed to fetch export data: {e}") from e

        if not rows:
            raise NotFoundError(f"Export {job_id} not found")
        if len(rows) > 1:
            logger.warning("Multiple records found with id %s, using the first one", job_id)

        try:
            record = ExportRecord(**rows[0])
        except ValidationError as e:
            raise UpstreamQueryError(f"Malformed export record for {job_id}: {e}") from e
        if record.design is None:
            raise MissingDataError(f"Design data is missing for export {job_id}")

        logger.info("Loaded design data for export %s", job_id)
        return record


class JobStatusRecorder:
    def __init__(self, store):
        self.store = store

    async def _write(self, job_id: str, fields: Dict[str, Any], stage: str, **kwargs) -> int:
        try:
            return await self.store.update(job_id, fields, **kwargs)
        except JobStoreError as e:
            raise StatusUpdateError(f"Failed to update export {job_id}: {e}", stage=stage) from e

    async def mark_processing(self, job_id: str) -> None:
        await self._write(job_id, {"status": "processing", "progress": 0}, "processing")
        logger.info("Export %s status updated to processing", job_id)

    async def claim(self, job_id: str) -> bool:
        """queued -> processing, only if nobody else moved the job out of `queued`."""
        changed = await self._write(
            job_id,
            {"status": "processing", "progress": 0},
            "processing",
            only_if_status="queued",
        )
        return changed > 0

    async def mark_completed(self, job_id: str, output_url: str) -> None:
        await self._write(
            job_id,
            {"output_url": output_url, "status": "completed", "progress": 100},
            "complete",
        )
        logger.info("Export %s record updated with output URL %s", job_id, output_url)

    async def mark_failed(self, job_id: str) -> None:
        await self._write(job_id, {"status": "failed"}, "failed")
        logger.info("Export %s status updated to failed", job_id)


class RenderOrchestrator:
    def __init__(
        self,
        renderer: RemotionRenderer,
        recorder: JobStatusRecorder,
        serve_url: str,
        composition_id: str = "RenderComposition",
        *,
        claim: bool = False,
    ):
        self.renderer = renderer
        self.recorder = recorder
        self.serve_url = serve_url
        self.composition_id = composition_id
        self.claim = claim

    async def _start(self, job_id: str) -> None:
        if self.claim:
            if not await self.recorder.claim(job_id):
                raise JobAlreadyClaimed(job_id)
            logger.info("Export %s claimed (queued -> processing)", job_id)
        else:
            await self.recorder.mark_processing(job_id)

    async def render(self, job_id: str, request: RenderRequest, output_path: str) -> str:
        """
        Writes `processing` before any rendering work, then resolves the
        composition and renders it to `output_path`. Returns the output path.
        """
        props = request.input_props()
        opts = request.options

        logger.info(
            "Render configuration: entry=%s composition=%s output=%s codec=%s fps=%s size=%sx%s",
            self.serve_url,
            self.composition_id,
            os.path.abspath(output_path),
            opts.codec,
            opts.fps,
            opts.width,
            opts.height,
        )

        await self._start(job_id)

        try:
            composition = await self.renderer.resolve_composition(
                self.serve_url, self.composition_id, props
            )
        except CompositionNotFound as e:
            raise CompositionResolutionError(str(e)) from e
        except RemotionError as e:
            raise CompositionResolutionError(f"Could not resolve composition: {e}") from e

        out_dir = os.path.dirname(output_path)
        if out_dir and not os.path.isdir(out_dir):
            try:
                os.makedirs(out_dir, exist_ok=True)
            except OSError as e:
                raise RenderEngineError(f"Could not create output directory {out_dir}: {e}") from e
            logger.info("Created output directory %s", out_dir)

        logger.info("Starting Remotion render for export %s", job_id)
        try:
            await self.renderer.render(composition, self.serve_url, opts.codec, output_path, props)
        except RemotionError as e:
            raise RenderEngineError(str(e)) from e

        logger.info("Rendered composition %s to %s", composition.id, output_path)
        return output_path


class ArtifactPublisher:
    def __init__(self, storage: R2Storage):
        self.storage = storage

    async def publish(self, job_id: str, local_path: str) -> Artifact:
        key = object_key_for(job_id, local_path)
        content_type = content_type_for(local_path)
        try:
            data = Path(local_path).read_bytes()
        except OSError as e:
            raise UploadError(f"Could not read rendered file {local_path}: {e}") from e

        logger.info("Uploading %d bytes to %s (%s)", len(data), key, content_type)
        try:
            await asyncio.to_thread(self.storage.put_bytes, key, data, content_type=content_type)
        except R2Error as e:
            raise UploadError(str(e)) from e

        return Artifact(local_path=local_path, object_key=key, public_url=self.storage.public_url(key))


# ---------- Whole run ----------

class ExportPipeline:
    def __init__(
        self,
        store,
        renderer: RemotionRenderer,
        storage: R2Storage,
        serve_url: str,
        composition_id: str = "RenderComposition",
        *,
        claim: bool = False,
        mark_failed: bool = False,
    ):
        self.recorder = JobStatusRecorder(store)
        self.resolver = JobInputResolver(store)
        self.orchestrator = RenderOrchestrator(
            renderer, self.recorder, serve_url, composition_id, claim=claim
        )
        self.publisher = ArtifactPublisher(storage)
        self.mark_failed = mark_failed

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        bundle_dir: Optional[str] = None,
        claim: bool = False,
        mark_failed: bool = False,
    ) -> "ExportPipeline":
        store = SupabaseJobStore(
            settings.supabase_url, settings.supabase_service_key, settings.exports_table
        )
        return cls(
            store,
            RemotionRenderer(settings.remotion_cli),
            R2Storage.from_settings(settings),
            bundle_dir or settings.remotion_bundle_url,
            settings.composition_id,
            claim=claim,
            mark_failed=mark_failed,
        )

    async def run(
        self,
        job_id: str,
        output_path: Optional[str] = None,
        *,
        fps: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        format: Optional[str] = None,
        codec: Optional[str] = None,
    ) -> ExportResult:
        record = await self.resolver.resolve(job_id)
        options = resolve_render_options(
            record.design, fps=fps, width=width, height=height, format=format, codec=codec
        )
        request = RenderRequest(design_payload=record.design, options=options)

        is_temp = not output_path
        local_path = output_path or default_output_path(job_id)
        try:
            try:
                await self.orchestrator.render(job_id, request, local_path)
            except JobAlreadyClaimed:
                logger.info("Export %s is already claimed by another run, skipping", job_id)
                return ExportResult(job_id=job_id, skipped=True)

            artifact = await self.publisher.publish(job_id, local_path)
            await self.recorder.mark_completed(job_id, artifact.public_url)
            return ExportResult(job_id=job_id, artifact=artifact)
        except Exception as e:
            if self.mark_failed and not _failed_before_processing(e):
                await self._record_failure(job_id)
            raise
        finally:
            if is_temp:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(local_path)

    async def _record_failure(self, job_id: str) -> None:
        try:
            await self.recorder.mark_failed(job_id)
        except StatusUpdateError as e:
            # keep the original error as the one that propagates
            logger.error("Could not mark export %s as failed: %s", job_id, e)


def _failed_before_processing(exc: BaseException) -> bool:
    return isinstance(exc, StatusUpdateError) and exc.stage == "processing"
