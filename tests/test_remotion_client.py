import json
import os

import pytest

from remotion_client import Composition, CompositionNotFound, RemotionError, RemotionRenderer


class RecordingRenderer(RemotionRenderer):
    """Captures CLI invocations (and the props file contents) instead of spawning Node."""

    def __init__(self, results, **kwargs):
        super().__init__(**kwargs)
        self.results = list(results)
        self.calls = []

    async def _run(self, args):
        props_arg = next(a for a in args if a.startswith("--props="))
        with open(props_arg.split("=", 1)[1], encoding="utf-8") as f:
            props = json.load(f)
        self.calls.append((args, props))
        result = self.results.pop(0)
        if callable(result):
            return result(args)
        return result


@pytest.mark.asyncio
async def test_resolve_composition_lists_bundle_with_props():
    renderer = RecordingRenderer([(0, "Intro RenderComposition\n", "")])
    props = {"design": {"fps": 30}, "options": {"codec": "h264"}}

    comp = await renderer.resolve_composition("https://bundle/site", "RenderComposition", props)

    assert comp == Composition(id="RenderComposition", serve_url="https://bundle/site")
    args, seen_props = renderer.calls[0]
    assert args[:2] == ["compositions", "https://bundle/site"]
    assert "--quiet" in args
    assert seen_props == props


@pytest.mark.asyncio
async def test_missing_composition_lists_what_is_available():
    renderer = RecordingRenderer([(0, "Intro Outro", "")])
    with pytest.raises(CompositionNotFound, match="available: Intro, Outro"):
        await renderer.resolve_composition("https://bundle/site", "RenderComposition", {})


@pytest.mark.asyncio
async def test_bad_bundle_raises_with_stderr():
    renderer = RecordingRenderer([(1, "", "Error: could not fetch bundle\n")])
    with pytest.raises(RemotionError, match="could not fetch bundle"):
        await renderer.resolve_composition("https://bundle/bad", "RenderComposition", {})


@pytest.mark.asyncio
async def test_render_builds_command_and_cleans_props_file(tmp_path):
    out = tmp_path / "video.mp4"

    def write_output(args):
        out.write_bytes(b"mp4")
        return (0, "Rendered", "")

    renderer = RecordingRenderer([write_output], extra_args=["--concurrency=2"])
    comp = Composition(id="RenderComposition", serve_url="https://bundle/site")
    await renderer.render(comp, "https://bundle/site", "vp9", str(out), {"design": {}})

    args, _ = renderer.calls[0]
    assert args[:4] == ["render", "https://bundle/site", "RenderComposition", str(out)]
    assert "--codec=vp9" in args
    assert "--enable-multiprocess-on-linux" in args
    assert args[-1] == "--concurrency=2"
    props_path = next(a for a in args if a.startswith("--props=")).split("=", 1)[1]
    assert not os.path.exists(props_path)


@pytest.mark.asyncio
async def test_render_failure_raises(tmp_path):
    renderer = RecordingRenderer([(1, "", "Error: Timeout exceeded rendering frame 12")])
    comp = Composition(id="RenderComposition", serve_url="u")
    with pytest.raises(RemotionError, match="Timeout exceeded"):
        await renderer.render(comp, "u", "h264", str(tmp_path / "v.mp4"), {})


@pytest.mark.asyncio
async def test_render_without_output_file_raises(tmp_path):
    renderer = RecordingRenderer([(0, "", "")])
    comp = Composition(id="RenderComposition", serve_url="u")
    with pytest.raises(RemotionError, match="wrote no file"):
        await renderer.render(comp, "u", "h264", str(tmp_path / "v.mp4"), {})


@pytest.mark.asyncio
async def test_run_spawns_cli_prefix():
    code, out, err = await RemotionRenderer("echo remotion")._run(["compositions", "x"])
    assert code == 0
    assert out.split() == ["remotion", "compositions", "x"]


@pytest.mark.asyncio
async def test_missing_executable_is_a_remotion_error():
    with pytest.raises(RemotionError, match="could not start"):
        await RemotionRenderer("no-such-remotion-binary-xyz")._run(["render"])
