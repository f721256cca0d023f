import asyncio
import functools
import random
from dataclasses import dataclass

import structlog
from PIL import ImageFont

from .errors import PreviewError, describe
from .results import Artifact, ConversionResult, RasterFormat, Strategy, artifact_name
from .surface import RasterSurface

log = structlog.get_logger(__name__)

TITLE = "Professional Resume"
CONTACT = "contact@example.com | (555) 123-4567 | linkedin.com/in/username"
MAX_NAME_LENGTH = 40

INK = (51, 65, 85)
MUTED = (100, 116, 139)
RULE = (148, 163, 184)
BAND = (248, 250, 252)
EDGE = (226, 232, 240)


@dataclass(frozen=True)
class Box:
    kind: str
    left: int
    top: int
    right: int
    bottom: int
    text: str | None = None

    @property
    def width(self) -> int:
        return self.right - self.left


@dataclass(frozen=True)
class PlaceholderLayout:
    width: int
    height: int
    boxes: tuple[Box, ...]

    def structure(self) -> tuple[tuple[str, int, int, int], ...]:
        """Layout geometry without cosmetic line widths."""
        return tuple((b.kind, b.left, b.top, b.bottom) for b in self.boxes)

    def of_kind(self, kind: str) -> list[Box]:
        return [b for b in self.boxes if b.kind == kind]


def truncate_name(display_name: str, limit: int = MAX_NAME_LENGTH) -> str:
    if len(display_name) <= limit:
        return display_name
    return display_name[: limit - 3] + "..."


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


@functools.lru_cache(maxsize=None)
def load_font(size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    """Sized default font, or the fixed bitmap font on Pillow builds without FreeType."""
    try:
        return ImageFont.load_default(size=size)
    except (ImportError, OSError):
        log.info("synthetic.font_fallback", size=size)
        return ImageFont.load_default()


class SyntheticRenderer:
    """Draws a content-free, resume-shaped placeholder page.

    Never reads the document. Line widths vary cosmetically between calls; the
    number, order and vertical position of every element do not.
    """

    strategy = Strategy.SYNTHETIC

    def __init__(
        self,
        *,
        width: int = 800,
        height: int = 1130,
        line_count: int = 12,
        raster_format: RasterFormat = RasterFormat.PNG,
        quality: float = 0.95,
        rng: random.Random | None = None,
    ) -> None:
        self._width = width
        self._height = height
        self._line_count = line_count
        self._format = raster_format
        self._quality = quality
        self._rng = rng or random.Random()

    async def attempt(self, document_bytes: bytes, display_name: str, **_: object) -> ConversionResult:
        return await self.render(display_name, len(document_bytes))

    async def render(self, display_name: str, file_size_hint: int | None = None) -> ConversionResult:
        try:
            layout = self.layout(display_name, file_size_hint)
            data = await asyncio.to_thread(self._draw, layout)
        except asyncio.CancelledError:
            raise
        except PreviewError as e:
            log.warning("synthetic.failed", display_name=display_name, error=describe(e))
            return ConversionResult.failure(describe(e), self.strategy)
        except Exception as e:
            log.exception("synthetic.unexpected_error", display_name=display_name)
            return ConversionResult.failure(describe(e), self.strategy)

        artifact = Artifact(
            name=artifact_name(display_name, self._format),
            media_type=self._format.media_type,
            data=data,
        )
        log.info("synthetic.rendered", display_name=display_name, artifact=artifact.name, size=artifact.size)
        return ConversionResult.success(artifact, self.strategy)

    def layout(self, display_name: str, file_size_hint: int | None = None) -> PlaceholderLayout:
        w, h = self._width, self._height
        margin = 40
        text_left = margin + 20
        boxes = [
            Box("border", 0, 0, w - 1, h - 1),
            Box("header", margin, margin, w - margin, margin + 150),
            Box("title", text_left, margin + 30, w - text_left, margin + 62, TITLE),
            Box("contact", text_left, margin + 80, w - text_left, margin + 98, CONTACT),
            Box("divider", text_left, margin + 170, w - text_left, margin + 172),
        ]

        max_width = w - 2 * (text_left + 20)
        top = margin + 200
        step = (h - margin - 80 - top) // max(self._line_count, 1)
        for i in range(self._line_count):
            left = text_left + 20
            if i % 4 == 0:
                boxes.append(Box("heading", text_left, top, text_left + max_width // 3, top + 16))
            else:
                line_width = int(max_width * self._rng.uniform(0.6, 1.0))
                boxes.append(Box("line", left, top + 4, left + line_width, top + 12))
            top += step

        footer = f"File: {truncate_name(display_name)}"
        if file_size_hint is not None and file_size_hint >= 0:
            footer = f"{footer} ({format_size(file_size_hint)})"
        boxes.append(Box("footer", text_left, h - margin - 14, w - text_left, h - margin, footer))
        return PlaceholderLayout(width=w, height=h, boxes=tuple(boxes))

    def _draw(self, layout: PlaceholderLayout) -> bytes:
        surface = RasterSurface(layout.width, layout.height)
        draw = surface.draw()
        title_font = load_font(32)
        body_font = load_font(16)
        small_font = load_font(12)

        for box in layout.boxes:
            rect = (box.left, box.top, box.right, box.bottom)
            if box.kind == "border":
                draw.rectangle(rect, outline=EDGE, width=1)
            elif box.kind == "header":
                draw.rectangle(rect, fill=BAND)
            elif box.kind == "title":
                draw.text((box.left, box.top), box.text or "", fill=INK, font=title_font)
            elif box.kind == "contact":
                draw.text((box.left, box.top), box.text or "", fill=MUTED, font=body_font)
            elif box.kind == "divider":
                draw.rectangle(rect, fill=RULE)
            elif box.kind == "heading":
                draw.rectangle(rect, fill=INK)
            elif box.kind == "line":
                draw.rectangle(rect, fill=RULE)
            elif box.kind == "footer":
                draw.text((box.left, box.top), box.text or "", fill=RULE, font=small_font)

        return surface.encode(self._format, self._quality)
