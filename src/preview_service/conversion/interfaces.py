from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from PIL import Image

    from .results import ConversionResult, Strategy


class EngineDocument(Protocol):
    """A parsed document owned by the rendering engine."""

    @property
    def page_count(self) -> int:
        ...

    def page_size(self, index: int) -> tuple[float, float]:
        """Intrinsic page size in points (1/72 inch)."""

    def render_page(self, index: int, scale: float) -> "Image.Image":
        """Rasterize one page at ``scale`` times its intrinsic size.
        This is a blocking call; callers run it on the engine's worker.
        """

    def close(self) -> None:
        ...


class DocumentEngine(Protocol):
    name: str
    version: str | None

    def open(self, data: bytes) -> EngineDocument:
        """Parse raw bytes into a document; raise on malformed input."""


class PreviewRenderer(Protocol):
    strategy: "Strategy"

    async def attempt(self, document_bytes: bytes, display_name: str, **options: object) -> "ConversionResult":
        """Run one strategy. Implementations return failures, they do not raise.

        ``options`` carries ``source_uri``, ``media_type`` and
        ``document_unreadable`` (an earlier strategy could not parse the
        document); renderers ignore the ones they do not use.
        """


class CaptureSupport(str, Enum):
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


class EmbeddingSurface(Protocol):
    """An isolated, off-screen surface that loads a document by URI."""

    async def start(self) -> None:
        ...

    async def wait_ready(self) -> None:
        """Return once the surface has finished loading (successfully or not)."""

    @property
    def load_error(self) -> str | None:
        ...

    def probe_capture(self) -> CaptureSupport:
        """Report whether pixels can be copied out of the surface right now."""

    def capture(self) -> "Image.Image":
        ...

    async def close(self) -> None:
        ...


SurfaceFactory = Callable[[Path, int, int], EmbeddingSurface]


class StorageGateway(Protocol):
    def document_dir(self, document_id: str) -> str:
        ...

    def save_blob(self, document_id: str, name: str, data: bytes) -> str:
        """Persist bytes and return a location reference."""

    def save_record(self, record: dict[str, object]) -> None:
        ...

    def load_record(self, document_id: str) -> dict[str, object]:
        ...


@dataclass(frozen=True)
class TemporaryResource:
    path: Path
    uri: str
