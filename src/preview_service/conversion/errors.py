"""Failure taxonomy for preview generation.

Every error below is raised inside a strategy and converted into the
``error_message`` of a :class:`~preview_service.conversion.results.ConversionResult`
at that strategy's boundary. None of them is meant to reach callers of the
pipeline.
"""


class PreviewError(Exception):
    """Base class for all preview pipeline failures."""


class LoadError(PreviewError):
    """The rendering engine could not be initialized."""


class ParseError(PreviewError):
    """The byte stream is not a recognizable or valid document."""


class RenderError(PreviewError):
    """Rasterizing a page (or loading it in an embedding surface) faulted."""


class CaptureTimeoutError(PreviewError, TimeoutError):
    """The embedding surface did not report ready within its bound.

    Informational: the capture strategy logs it and proceeds with whatever
    the surface has produced so far.
    """


class EncodeError(PreviewError):
    """Encoding a raster surface produced no bytes."""


class SurfaceUnavailable(PreviewError):
    """A drawing surface could not be allocated."""


def describe(exc: BaseException) -> str:
    """Render an exception as ``"<ClassName>: <message>"`` for result payloads."""
    message = str(exc).strip()
    name = type(exc).__name__
    return f"{name}: {message}" if message else name
