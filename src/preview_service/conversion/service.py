import asyncio
import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Mapping

import structlog

from .adapters import GhostscriptSurface, load_pdfium_engine
from .capture import CaptureRenderer
from .config import PipelineConfig
from .engine import EngineLoader
from .errors import describe
from .interfaces import PreviewRenderer, StorageGateway, SurfaceFactory
from .native import NativeRenderer
from .resources import ResourceManager
from .results import DOCUMENT_MEDIA_TYPE, ConversionResult, Strategy
from .synthetic import SyntheticRenderer

log = structlog.get_logger(__name__)


class PreviewPipeline:
    """Tries preview strategies in order until one produces a displayable result.

    ``convert`` never raises for document problems: every strategy failure is
    captured, the next strategy is tried, and only when all of them fail is the
    last failure returned.
    """

    def __init__(
        self,
        loader: EngineLoader,
        resources: ResourceManager,
        config: PipelineConfig | None = None,
        *,
        surface_factory: SurfaceFactory | None = None,
        renderers: Mapping[Strategy, PreviewRenderer] | None = None,
    ) -> None:
        self._config = config or PipelineConfig()
        self._loader = loader
        self._resources = resources
        cfg = self._config
        default_renderers: dict[Strategy, PreviewRenderer] = {
            Strategy.NATIVE: NativeRenderer(
                loader,
                scale=cfg.scale,
                raster_format=cfg.raster_format,
                quality=cfg.quality,
            ),
            Strategy.CAPTURE: CaptureRenderer(
                resources,
                surface_factory or GhostscriptSurface.factory(binary=cfg.ghostscript_binary),
                timeout=cfg.capture_timeout_s,
                width=cfg.capture_width,
                height=cfg.capture_height,
                raster_format=cfg.raster_format,
                quality=cfg.quality,
                allow_passthrough=cfg.allow_passthrough,
            ),
            Strategy.SYNTHETIC: SyntheticRenderer(raster_format=cfg.raster_format, quality=cfg.quality),
        }
        default_renderers.update(renderers or {})
        self._renderers = default_renderers

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "PreviewPipeline":
        return cls(EngineLoader(load_pdfium_engine), ResourceManager(config.tmp_dir), config)

    @property
    def loader(self) -> EngineLoader:
        return self._loader

    @property
    def resources(self) -> ResourceManager:
        return self._resources

    async def convert(
        self,
        document_bytes: bytes,
        display_name: str,
        *,
        strategies: Iterable[Strategy] | None = None,
        source_uri: str | None = None,
        media_type: str = DOCUMENT_MEDIA_TYPE,
    ) -> ConversionResult:
        order = tuple(strategies) if strategies is not None else self._config.strategies
        if not order:
            return ConversionResult.failure("no preview strategies configured")

        last: ConversionResult | None = None
        unreadable = False
        with structlog.contextvars.bound_contextvars(display_name=display_name):
            for strategy in order:
                result = await self._attempt(
                    strategy, document_bytes, display_name, source_uri, media_type, unreadable
                )
                if result.ok:
                    log.info(
                        "pipeline.strategy.succeeded",
                        strategy=strategy.value,
                        passthrough=result.passthrough,
                    )
                    return result
                log.info("pipeline.strategy.failed", strategy=strategy.value, error=result.error_message)
                unreadable = unreadable or result.document_unreadable
                last = result
            log.warning("pipeline.exhausted", attempted=[s.value for s in order])
        assert last is not None
        return last

    async def _attempt(
        self,
        strategy: Strategy,
        document_bytes: bytes,
        display_name: str,
        source_uri: str | None,
        media_type: str,
        document_unreadable: bool,
    ) -> ConversionResult:
        renderer = self._renderers.get(strategy)
        if renderer is None:
            return ConversionResult.failure(f"no renderer registered for {strategy.value}", strategy)
        log.debug("pipeline.strategy.attempt", strategy=strategy.value)
        try:
            result = await renderer.attempt(
                document_bytes,
                display_name,
                source_uri=source_uri,
                media_type=media_type,
                document_unreadable=document_unreadable,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("pipeline.strategy.crashed", strategy=strategy.value)
            return ConversionResult.failure(describe(e), strategy)
        if result.ok and result.preview_artifact.size == 0:
            return ConversionResult.failure(f"{strategy.value} produced an empty artifact", strategy)
        return result


@dataclass
class DocumentRecord:
    data: dict[str, object]

    @property
    def id(self) -> str:
        return str(self.data["id"])  # type: ignore[index]


Reader = Callable[[int], Awaitable[bytes]]


class UploadTooLarge(ValueError):
    pass


class EmptyUpload(ValueError):
    pass


class PreviewService:
    """Stores uploaded documents and attaches a preview to each.

    The original is always stored first. Preview generation problems are
    recorded on the document and never fail the upload.
    """

    def __init__(self, storage: StorageGateway, pipeline: PreviewPipeline) -> None:
        self._storage = storage
        self._pipeline = pipeline

    @property
    def pipeline(self) -> PreviewPipeline:
        return self._pipeline

    async def ingest_upload(
        self,
        filename: str,
        content_type: str,
        reader: Reader,
        *,
        max_upload_mb: int,
    ) -> DocumentRecord:
        """Read an upload, store it, generate and store its preview, return the record."""
        data, checksum_hex = await _read_limited(reader, max_upload_mb)

        document_id = str(uuid.uuid4())
        original_name = filename or "upload"
        ext = ""
        if "." in original_name:
            ext = "." + original_name.rsplit(".", 1)[-1].lower()
        content_type = content_type or DOCUMENT_MEDIA_TYPE

        document_uri = await asyncio.to_thread(
            self._storage.save_blob, document_id, f"original{ext}", data
        )
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        record: dict[str, object] = {
            "id": document_id,
            "filename": original_name,
            "content_type": content_type,
            "size_bytes": len(data),
            "checksum": checksum_hex,
            "created_at": now,
            "document_uri": document_uri,
            "preview_uri": None,
            "preview_name": None,
            "preview_media_type": None,
            "preview_strategy": None,
            "preview_passthrough": False,
            "preview_error": None,
        }
        await asyncio.to_thread(self._storage.save_record, record)

        with structlog.contextvars.bound_contextvars(document_id=document_id):
            try:
                await self._attach_preview(record, data, content_type)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.exception("preview.store_failed")
                record["preview_error"] = describe(e)
        await asyncio.to_thread(self._storage.save_record, record)
        return DocumentRecord(record)

    async def _attach_preview(self, record: dict[str, object], data: bytes, content_type: str) -> None:
        document_uri = str(record["document_uri"])
        result = await self._pipeline.convert(
            data,
            str(record["filename"]),
            source_uri=Path(document_uri).resolve().as_uri(),
            media_type=content_type,
        )
        record["preview_strategy"] = result.strategy.value if result.strategy else None
        if not result.ok:
            record["preview_error"] = result.error_message
            log.warning("preview.unavailable", error=result.error_message)
            return
        artifact = result.preview_artifact
        assert artifact is not None
        record["preview_media_type"] = artifact.media_type
        if result.passthrough:
            record["preview_passthrough"] = True
            record["preview_uri"] = document_uri
            record["preview_name"] = str(record["filename"])
            return
        suffix = Path(artifact.name).suffix
        record["preview_uri"] = await asyncio.to_thread(
            self._storage.save_blob, str(record["id"]), f"preview{suffix}", artifact.data
        )
        record["preview_name"] = artifact.name

    def load_record(self, document_id: str) -> DocumentRecord:
        return DocumentRecord(self._storage.load_record(document_id))


async def _read_limited(reader: Reader, max_upload_mb: int) -> tuple[bytes, str]:
    sha256 = hashlib.sha256()
    chunks: list[bytes] = []
    size_bytes = 0
    CHUNK = 1024 * 1024
    max_bytes = max_upload_mb * 1024 * 1024
    while True:
        chunk = await reader(CHUNK)
        if not chunk:
            break
        b = bytes(chunk)
        size_bytes += len(b)
        if size_bytes > max_bytes:
            raise UploadTooLarge(f"upload exceeds {max_upload_mb} MB")
        chunks.append(b)
        sha256.update(b)
    if size_bytes == 0:
        raise EmptyUpload("upload is empty")
    return b"".join(chunks), sha256.hexdigest()
