"""Shared fixtures: in-memory record store, fake renderer, mocked R2 client."""
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from job_store import MemoryJobStore
from pipeline import ExportPipeline
from r2_client import R2Storage
from remotion_client import Composition, CompositionNotFound, RemotionError

PUBLIC_BASE = "https://cdn.example.com"
BUNDLE_URL = "https://bundle.example.com/site"

ENV = {
    "PUBLIC_SUPABASE_URL": "https://proj.supabase.co",
    "SUPABASE_SERVICE_ROLE_KEY": "service-key",
    "REMOTION_BUNDLE_URL": BUNDLE_URL,
    "CLOUDFLARE_ACCOUNT_ID": "acct123",
    "CLOUDFLARE_R2_ACCESS_KEY_ID": "AKIA",
    "CLOUDFLARE_R2_SECRET_ACCESS_KEY": "secret",
    "CLOUDFLARE_R2_BUCKET_NAME": "exports-bucket",
    "CLOUDFLARE_R2_PUBLIC_URL": PUBLIC_BASE,
}


class FakeRenderer:
    """Stands in for RemotionRenderer; writes a few bytes instead of a real video."""

    def __init__(self, compositions=("RenderComposition",), fail_render=False):
        self.compositions = list(compositions)
        self.fail_render = fail_render
        self.resolved = []
        self.rendered = []

    async def resolve_composition(self, serve_url, composition_id, input_props):
        self.resolved.append((serve_url, composition_id, input_props))
        if composition_id not in self.compositions:
            raise CompositionNotFound(f"composition {composition_id!r} not found")
        return Composition(id=composition_id, serve_url=serve_url)

    async def render(self, composition, serve_url, codec, output_path, input_props):
        self.rendered.append(
            {"composition": composition, "codec": codec, "output_path": output_path, "props": input_props}
        )
        if self.fail_render:
            raise RemotionError("render failed (1): chromium crashed")
        Path(output_path).write_bytes(b"\x00\x00\x00\x18ftypmp42")


@pytest.fixture
def env():
    return dict(ENV)


@pytest.fixture
def design():
    return {"fps": 24, "size": {"width": 640, "height": 480}, "tracks": []}


@pytest.fixture
def store(design):
    return MemoryJobStore(
        [{"id": "job-1", "status": "queued", "user_id": "user-9", "design": design}]
    )


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def storage(s3_client):
    return R2Storage(s3_client, "exports-bucket", PUBLIC_BASE)


@pytest.fixture
def make_pipeline(store, renderer, storage):
    def _make(**kwargs):
        return ExportPipeline(store, renderer, storage, BUNDLE_URL, **kwargs)

    return _make
