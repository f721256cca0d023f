import asyncio
import functools
import json
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import structlog
from PIL import Image

from .engine import EngineHandle
from .interfaces import CaptureSupport, EngineDocument, StorageGateway, SurfaceFactory

log = structlog.get_logger(__name__)


class LocalStorage(StorageGateway):
    def __init__(self, data_dir: str) -> None:
        self._base = Path(data_dir).resolve()

    def document_dir(self, document_id: str) -> str:
        return str(self._base / "documents" / document_id)

    def save_blob(self, document_id: str, name: str, data: bytes) -> str:
        # Only the final path component of a client supplied name is used.
        safe_name = Path(name.replace("\\", "/")).name or "blob"
        p = Path(self.document_dir(document_id)) / safe_name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return str(p)

    def save_record(self, record: dict[str, object]) -> None:
        document_id = str(record["id"])
        p = Path(self.document_dir(document_id)) / "record.json"
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("w", encoding="utf-8") as f:
            json.dump(record, f, ensure_ascii=False, indent=2)

    def load_record(self, document_id: str) -> dict[str, object]:
        p = Path(self.document_dir(document_id)) / "record.json"
        if not p.exists():
            raise FileNotFoundError("document not found")
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)


class PdfiumDocument(EngineDocument):
    def __init__(self, pdf) -> None:
        self._pdf = pdf

    @property
    def page_count(self) -> int:
        return len(self._pdf)

    def page_size(self, index: int) -> tuple[float, float]:
        page = self._pdf[index]
        try:
            width, height = page.get_size()
            return float(width), float(height)
        finally:
            page.close()

    def render_page(self, index: int, scale: float) -> Image.Image:
        page = self._pdf[index]
        try:
            bitmap = page.render(scale=scale)
            # to_pil() shares the bitmap buffer; convert() detaches it.
            return bitmap.to_pil().convert("RGB")
        finally:
            page.close()

    def close(self) -> None:
        self._pdf.close()


class PdfiumEngine:
    name = "pypdfium2"

    def __init__(self, pdfium) -> None:
        self._pdfium = pdfium
        self.version: str | None = getattr(pdfium, "__version__", None)

    def open(self, data: bytes) -> PdfiumDocument:
        return PdfiumDocument(self._pdfium.PdfDocument(data))


def load_pdfium_engine() -> EngineHandle:
    """Import pypdfium2 and pair it with the single worker thread that owns it."""
    try:
        import pypdfium2 as pdfium  # type: ignore
    except ImportError as e:
        raise RuntimeError("Missing dependency: pypdfium2 is required for native rendering.") from e
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pdfium")
    return EngineHandle(engine=PdfiumEngine(pdfium), executor=executor)


class GhostscriptSurface:
    """Embedding surface backed by a sandboxed Ghostscript process.

    The process loads the document off-screen (``-dSAFER``) and rasterizes its
    first page into a private directory. Pixels can be copied only once that
    image exists; without a Ghostscript binary capture is unsupported.
    """

    def __init__(self, document_path: Path, width: int, height: int, *, binary: str = "gs") -> None:
        self._document = Path(document_path)
        self._width = width
        self._height = height
        self._executable = shutil.which(binary)
        self._workdir: Path | None = None
        self._output: Path | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._ready = False
        self._load_error: str | None = None

    @classmethod
    def factory(cls, *, binary: str = "gs") -> SurfaceFactory:
        return functools.partial(cls, binary=binary)

    @property
    def load_error(self) -> str | None:
        return self._load_error

    async def start(self) -> None:
        if self._executable is None:
            log.info("capture.surface.unavailable", reason="ghostscript not found")
            return
        self._workdir = Path(tempfile.mkdtemp(prefix="preview-surface-"))
        self._output = self._workdir / "page.png"
        cmd = [
            self._executable,
            "-q",
            "-dSAFER",
            "-dBATCH",
            "-dNOPAUSE",
            "-sDEVICE=png16m",
            "-dFirstPage=1",
            "-dLastPage=1",
            "-dPDFFitPage",
            f"-g{self._width}x{self._height}",
            "-o",
            str(self._output),
            str(self._document),
        ]
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def wait_ready(self) -> None:
        if self._proc is None:
            self._ready = True
            return
        _, stderr = await self._proc.communicate()
        self._ready = True
        if self._proc.returncode != 0:
            msg = (stderr or b"").decode("utf-8", errors="ignore").strip()[:500]
            self._load_error = msg or f"ghostscript exited with status {self._proc.returncode}"
        elif self._output is None or not self._output.exists():
            self._load_error = "ghostscript produced no page image"

    def probe_capture(self) -> CaptureSupport:
        if not self._ready or self._output is None or not self._output.exists():
            return CaptureSupport.UNSUPPORTED
        return CaptureSupport.SUPPORTED

    def capture(self) -> Image.Image:
        if self._output is None:
            raise RuntimeError("surface was never started")
        with Image.open(self._output) as img:
            return img.convert("RGB")

    async def close(self) -> None:
        if self._proc is not None and self._proc.returncode is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass
            await self._proc.wait()
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
