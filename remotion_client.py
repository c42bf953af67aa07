# remotion_client.py
# Thin async wrapper around the Remotion CLI (`remotion compositions` / `remotion render`).
import asyncio
import contextlib
import json
import logging
import os
import shlex
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

STDERR_TAIL = 2000


class RemotionError(Exception):
    pass


class CompositionNotFound(RemotionError):
    pass


@dataclass(frozen=True)
class Composition:
    id: str
    serve_url: str


@contextlib.contextmanager
def _props_file(input_props: Dict[str, Any]) -> Iterator[str]:
    """Write input props to a temp JSON file; the CLI takes a path for large payloads."""
    fd, path = tempfile.mkstemp(prefix="remotion-props-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(input_props, f)
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)


def _tail(text: str) -> str:
    text = text.strip()
    return text[-STDERR_TAIL:] if len(text) > STDERR_TAIL else text


class RemotionRenderer:
    def __init__(self, cli: str = "npx remotion", *, extra_args: Optional[Sequence[str]] = None):
        self.cli = shlex.split(cli)
        self.extra_args = list(extra_args or [])

    async def _run(self, args: List[str]) -> Tuple[int, str, str]:
        cmd = self.cli + args
        logger.debug("Running %s", " ".join(shlex.quote(a) for a in cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RemotionError(f"could not start {cmd[0]}: {e}") from e
        out, err = await proc.communicate()
        return (
            proc.returncode,
            out.decode("utf-8", errors="replace"),
            err.decode("utf-8", errors="replace"),
        )

    async def list_compositions(self, serve_url: str, input_props: Dict[str, Any]) -> List[str]:
        with _props_file(input_props) as props_path:
            code, out, err = await self._run(
                ["compositions", serve_url, f"--props={props_path}", "--quiet"]
            )
        if code != 0:
            raise RemotionError(f"compositions failed ({code}): {_tail(err) or _tail(out)}")
        return out.split()

    async def resolve_composition(
        self, serve_url: str, composition_id: str, input_props: Dict[str, Any]
    ) -> Composition:
        """
        Look up `composition_id` in the bundle. Props are passed so that
        data-dependent metadata (duration, size) is evaluated by the bundle.
        """
        available = await self.list_compositions(serve_url, input_props)
        if composition_id not in available:
            raise CompositionNotFound(
                f"composition {composition_id!r} not found in {serve_url} "
                f"(available: {', '.join(available) or 'none'})"
            )
        return Composition(id=composition_id, serve_url=serve_url)

    async def render(
        self,
        composition: Composition,
        serve_url: str,
        codec: str,
        output_path: str,
        input_props: Dict[str, Any],
    ) -> None:
        with _props_file(input_props) as props_path:
            code, out, err = await self._run(
                [
                    "render",
                    serve_url,
                    composition.id,
                    output_path,
                    f"--codec={codec}",
                    f"--props={props_path}",
                    "--enable-multiprocess-on-linux",
                    *self.extra_args,
                ]
            )
        if code != 0:
            raise RemotionError(f"render failed ({code}): {_tail(err) or _tail(out)}")
        if not os.path.isfile(output_path):
            raise RemotionError(f"render exited cleanly but wrote no file at {output_path}")
