import asyncio

import structlog

from .engine import EngineHandle, EngineLoader
from .errors import ParseError, PreviewError, RenderError, describe
from .interfaces import EngineDocument
from .results import Artifact, ConversionResult, RasterFormat, Strategy, artifact_name
from .surface import RasterSurface

log = structlog.get_logger(__name__)


class NativeRenderer:
    """Renders the first page of a document with the loaded rendering engine."""

    strategy = Strategy.NATIVE

    def __init__(
        self,
        loader: EngineLoader,
        *,
        scale: float = 1.5,
        raster_format: RasterFormat = RasterFormat.PNG,
        quality: float = 0.95,
    ) -> None:
        self._loader = loader
        self._scale = scale
        self._format = raster_format
        self._quality = quality

    async def attempt(self, document_bytes: bytes, display_name: str, **_: object) -> ConversionResult:
        return await self.render(document_bytes, display_name)

    async def render(self, document_bytes: bytes, display_name: str) -> ConversionResult:
        try:
            handle = await self._loader.acquire()
            data = await self._rasterize(handle, document_bytes)
        except asyncio.CancelledError:
            raise
        except ParseError as e:
            log.info("native.unparseable", display_name=display_name, error=describe(e))
            return ConversionResult.failure(describe(e), self.strategy, document_unreadable=True)
        except PreviewError as e:
            log.info("native.failed", display_name=display_name, error=describe(e))
            return ConversionResult.failure(describe(e), self.strategy)
        except Exception as e:
            log.exception("native.unexpected_error", display_name=display_name)
            return ConversionResult.failure(describe(e), self.strategy)

        artifact = Artifact(
            name=artifact_name(display_name, self._format),
            media_type=self._format.media_type,
            data=data,
        )
        log.info("native.rendered", display_name=display_name, artifact=artifact.name, size=artifact.size)
        return ConversionResult.success(artifact, self.strategy)

    async def _rasterize(self, handle: EngineHandle, document_bytes: bytes) -> bytes:
        document = await self._parse(handle, document_bytes)
        try:
            if await handle.call(getattr, document, "page_count") < 1:
                raise ParseError("document has no pages")
            width, height = await handle.call(document.page_size, 0)
            surface = RasterSurface(width * self._scale, height * self._scale)
            try:
                page_image = await handle.call(document.render_page, 0, self._scale)
            except Exception as e:
                raise RenderError(f"first page could not be rendered: {e}") from e
            surface.paste(page_image, fit=True)
        finally:
            await handle.call(document.close)
        return await asyncio.to_thread(surface.encode, self._format, self._quality)

    async def _parse(self, handle: EngineHandle, document_bytes: bytes) -> EngineDocument:
        if not document_bytes:
            raise ParseError("document is empty")
        try:
            return await handle.call(handle.engine.open, bytes(document_bytes))
        except Exception as e:
            raise ParseError(f"not a readable document: {e}") from e
