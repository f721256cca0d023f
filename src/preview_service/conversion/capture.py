import asyncio

import structlog

from .errors import CaptureTimeoutError, PreviewError, RenderError, describe
from .interfaces import CaptureSupport, EmbeddingSurface, SurfaceFactory
from .resources import ResourceManager
from .results import (
    DOCUMENT_MEDIA_TYPE,
    Artifact,
    ConversionResult,
    PassthroughResult,
    RasterFormat,
    Strategy,
    artifact_name,
)
from .surface import RasterSurface, WHITE

log = structlog.get_logger(__name__)

# PDF readers accept the header anywhere in the first kilobyte.
_HEADER_WINDOW = 1024
_DOCUMENT_MAGIC = b"%PDF-"


class CaptureRenderer:
    """Loads the document in an isolated embedding surface and copies its pixels.

    Readiness is raced against ``timeout`` seconds; a surface that is still
    loading when the bound elapses is used as-is. When pixels cannot be copied
    out of the surface the result is a passthrough to the original document,
    unless the document is already known to be unreadable or does not carry a
    document header at all.
    """

    strategy = Strategy.CAPTURE

    def __init__(
        self,
        resources: ResourceManager,
        surface_factory: SurfaceFactory,
        *,
        timeout: float = 2.0,
        width: int = 800,
        height: int = 1100,
        raster_format: RasterFormat = RasterFormat.PNG,
        quality: float = 0.95,
        allow_passthrough: bool = True,
    ) -> None:
        self._resources = resources
        self._surface_factory = surface_factory
        self._timeout = timeout
        self._width = width
        self._height = height
        self._format = raster_format
        self._quality = quality
        self._allow_passthrough = allow_passthrough

    async def attempt(
        self,
        document_bytes: bytes,
        display_name: str,
        *,
        source_uri: str | None = None,
        media_type: str = DOCUMENT_MEDIA_TYPE,
        document_unreadable: bool = False,
        **_: object,
    ) -> ConversionResult:
        return await self.render(
            document_bytes,
            display_name,
            source_uri=source_uri,
            media_type=media_type,
            document_unreadable=document_unreadable,
        )

    async def render(
        self,
        document_bytes: bytes,
        display_name: str,
        *,
        source_uri: str | None = None,
        media_type: str = DOCUMENT_MEDIA_TYPE,
        document_unreadable: bool = False,
    ) -> ConversionResult:
        try:
            async with self._resources.scope() as scope:
                resource = await scope.temporary_document(document_bytes)
                surface = scope.adopt(self._surface_factory(resource.path, self._width, self._height))
                await surface.start()
                await self._await_ready(surface, display_name)
                if surface.load_error:
                    raise RenderError(f"embedding surface failed to load document: {surface.load_error}")

                raster = RasterSurface(self._width, self._height)
                raster.fill(WHITE)
                support = surface.probe_capture()
                if support is CaptureSupport.UNSUPPORTED:
                    return self._refused(
                        document_bytes, display_name, source_uri, media_type, document_unreadable
                    )
                try:
                    raster.paste(await asyncio.to_thread(surface.capture), fit=True)
                except Exception as e:
                    raise RenderError(f"pixel copy from embedding surface failed: {e}") from e
                data = await asyncio.to_thread(raster.encode, self._format, self._quality)
        except asyncio.CancelledError:
            raise
        except PreviewError as e:
            log.info("capture.failed", display_name=display_name, error=describe(e))
            return ConversionResult.failure(describe(e), self.strategy)
        except Exception as e:
            log.exception("capture.unexpected_error", display_name=display_name)
            return ConversionResult.failure(describe(e), self.strategy)

        artifact = Artifact(
            name=artifact_name(display_name, self._format),
            media_type=self._format.media_type,
            data=data,
        )
        log.info("capture.rendered", display_name=display_name, artifact=artifact.name, size=artifact.size)
        return ConversionResult.success(artifact, self.strategy)

    async def _await_ready(self, surface: EmbeddingSurface, display_name: str) -> None:
        ready = asyncio.ensure_future(surface.wait_ready())
        done, _ = await asyncio.wait({ready}, timeout=self._timeout)
        if ready in done:
            # surfaces report load problems through load_error, not exceptions
            if not ready.cancelled() and ready.exception() is not None:
                log.warning("capture.ready_error", display_name=display_name, error=str(ready.exception()))
            return
        ready.cancel()
        # wait_ready must have unwound before the scope closes the surface
        await asyncio.wait({ready})
        timeout = CaptureTimeoutError(f"embedding surface not ready after {self._timeout:.3f}s")
        log.info("capture.timeout", display_name=display_name, error=describe(timeout))

    def _refused(
        self,
        document_bytes: bytes,
        display_name: str,
        source_uri: str | None,
        media_type: str,
        document_unreadable: bool,
    ) -> ConversionResult:
        if document_unreadable or not looks_like_document(document_bytes):
            log.info("capture.passthrough_withheld", display_name=display_name)
            return ConversionResult.failure(
                "pixel capture unsupported and document is not readable; passthrough withheld",
                self.strategy,
                document_unreadable=True,
            )
        if not self._allow_passthrough:
            log.info("capture.unsupported", display_name=display_name)
            return ConversionResult.failure("pixel capture unsupported by embedding surface", self.strategy)
        log.info("capture.passthrough", display_name=display_name)
        return PassthroughResult.for_document(
            document_bytes,
            display_name,
            source_uri=source_uri,
            media_type=media_type,
            strategy=self.strategy,
        )


def looks_like_document(data: bytes) -> bool:
    return _DOCUMENT_MAGIC in bytes(data[:_HEADER_WINDOW])
