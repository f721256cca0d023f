import base64
import re
from dataclasses import dataclass, field
from enum import Enum


DOCUMENT_MEDIA_TYPE = "application/pdf"

_DOCUMENT_EXTENSION = re.compile(r"\.pdf$", re.IGNORECASE)


class Strategy(str, Enum):
    """Which attempt produced a result. Internal; used for logs and tests."""

    NATIVE = "native"
    CAPTURE = "capture"
    SYNTHETIC = "synthetic"

    @classmethod
    def parse_order(cls, value: str) -> tuple["Strategy", ...]:
        """Parse a comma separated strategy list such as ``"native,synthetic"``."""
        order: list[Strategy] = []
        for part in value.split(","):
            name = part.strip().lower()
            if not name:
                continue
            try:
                strategy = cls(name)
            except ValueError:
                raise ValueError(f"unknown preview strategy: {part.strip()!r}") from None
            if strategy in order:
                raise ValueError(f"duplicate preview strategy: {name!r}")
            order.append(strategy)
        if not order:
            raise ValueError("at least one preview strategy is required")
        return tuple(order)


DEFAULT_ORDER = (Strategy.NATIVE, Strategy.CAPTURE, Strategy.SYNTHETIC)


class RasterFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"

    @property
    def extension(self) -> str:
        return ".png" if self is RasterFormat.PNG else ".jpg"

    @property
    def media_type(self) -> str:
        return f"image/{self.value}"

    @property
    def pillow_format(self) -> str:
        return self.value.upper()

    @property
    def lossy(self) -> bool:
        return self is RasterFormat.JPEG


def artifact_name(display_name: str, raster_format: RasterFormat = RasterFormat.PNG) -> str:
    """Derive the preview file name from a document's display name.

    At most one trailing ``.pdf`` (any case) is removed before the raster
    extension is appended: ``"scan.PDF"`` -> ``"scan.png"``,
    ``"a.b.pdf"`` -> ``"a.b.png"``, ``"noext"`` -> ``"noext.png"``.
    """
    stem = _DOCUMENT_EXTENSION.sub("", display_name or "", count=1)
    return f"{stem or 'preview'}{raster_format.extension}"


@dataclass(frozen=True)
class Artifact:
    name: str
    media_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of one conversion request.

    Exactly one of ``preview_artifact`` or ``error_message`` is set. The result
    is created per request and holds no reference into pipeline resources.
    ``document_unreadable`` marks a failure caused by the document itself
    rather than by the strategy that tried it.
    """

    preview_uri: str | None = None
    preview_artifact: Artifact | None = None
    error_message: str | None = None
    strategy: Strategy | None = None
    document_unreadable: bool = False

    def __post_init__(self) -> None:
        has_artifact = self.preview_artifact is not None
        has_error = self.error_message is not None
        if has_artifact == has_error:
            raise ValueError("ConversionResult needs exactly one of preview_artifact or error_message")

    @property
    def ok(self) -> bool:
        return self.error_message is None

    @property
    def passthrough(self) -> bool:
        return False

    @classmethod
    def success(cls, artifact: Artifact, strategy: Strategy, *, preview_uri: str | None = None) -> "ConversionResult":
        return cls(preview_uri=preview_uri, preview_artifact=artifact, strategy=strategy)

    @classmethod
    def failure(
        cls,
        message: str,
        strategy: Strategy | None = None,
        *,
        document_unreadable: bool = False,
    ) -> "ConversionResult":
        return cls(
            error_message=message or "unknown error",
            strategy=strategy,
            document_unreadable=document_unreadable,
        )


@dataclass(frozen=True)
class PassthroughResult(ConversionResult):
    """A success that points viewers at the original document instead of a raster."""

    @property
    def passthrough(self) -> bool:
        return True

    @classmethod
    def for_document(
        cls,
        document_bytes: bytes,
        display_name: str,
        *,
        source_uri: str | None = None,
        media_type: str = DOCUMENT_MEDIA_TYPE,
        strategy: Strategy = Strategy.CAPTURE,
    ) -> "PassthroughResult":
        uri = source_uri or data_uri(document_bytes, media_type)
        original = Artifact(name=display_name, media_type=media_type, data=bytes(document_bytes))
        return cls(preview_uri=uri, preview_artifact=original, strategy=strategy)


def data_uri(data: bytes, media_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{encoded}"
