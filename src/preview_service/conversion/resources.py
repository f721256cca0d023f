import asyncio
import contextlib
import os
import tempfile
from pathlib import Path
from typing import AsyncIterator

import structlog

from .interfaces import EmbeddingSurface, TemporaryResource

log = structlog.get_logger(__name__)


class ResourceScope:
    """Ephemeral handles owned by a single strategy attempt.

    Handles are released in reverse order of acquisition when the scope exits.
    """

    def __init__(self, manager: "ResourceManager", stack: contextlib.AsyncExitStack) -> None:
        self._manager = manager
        self._stack = stack

    async def temporary_document(self, data: bytes, *, suffix: str = ".pdf") -> TemporaryResource:
        fd, name = tempfile.mkstemp(prefix="preview-", suffix=suffix, dir=self._manager.tmp_dir)
        path = Path(name)
        self._manager._track(+1)
        self._stack.push_async_callback(self._remove, path)

        def write() -> None:
            with os.fdopen(fd, "wb") as f:
                f.write(data)

        await asyncio.to_thread(write)
        return TemporaryResource(path=path, uri=path.resolve().as_uri())

    def adopt(self, surface: EmbeddingSurface) -> EmbeddingSurface:
        self._manager._track(+1)
        self._stack.push_async_callback(self._close_surface, surface)
        return surface

    async def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("resources.release_failed", kind="temporary_document", path=str(path), error=str(e))
        finally:
            self._manager._track(-1)

    async def _close_surface(self, surface: EmbeddingSurface) -> None:
        try:
            await surface.close()
        except Exception as e:
            log.warning("resources.release_failed", kind="embedding_surface", error=str(e))
        finally:
            self._manager._track(-1)


class ResourceManager:
    """Tracks temporary resource handles and embedding surfaces.

    ``active`` counts handles that have been acquired and not yet released,
    across all open scopes.
    """

    def __init__(self, tmp_dir: str | os.PathLike[str] | None = None) -> None:
        self.tmp_dir = str(tmp_dir) if tmp_dir is not None else None
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    def _track(self, delta: int) -> None:
        self._active += delta

    @contextlib.asynccontextmanager
    async def scope(self) -> AsyncIterator[ResourceScope]:
        async with contextlib.AsyncExitStack() as stack:
            yield ResourceScope(self, stack)
