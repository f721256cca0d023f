import io

from PIL import Image, ImageDraw

from .errors import EncodeError, SurfaceUnavailable
from .results import RasterFormat

# Refuse surfaces larger than ~40 megapixels (a 1.5x render of an A0 sheet).
MAX_SURFACE_PIXELS = 40_000_000

WHITE = (255, 255, 255)


class RasterSurface:
    """Fixed-size RGB pixel buffer that drawing and rendering target.

    Created per conversion attempt and discarded after encoding.
    """

    def __init__(self, width: int, height: int, background: tuple[int, int, int] = WHITE) -> None:
        width, height = int(round(width)), int(round(height))
        if width <= 0 or height <= 0:
            raise SurfaceUnavailable(f"invalid surface size {width}x{height}")
        if width * height > MAX_SURFACE_PIXELS:
            raise SurfaceUnavailable(f"surface {width}x{height} exceeds {MAX_SURFACE_PIXELS} pixels")
        try:
            self._image = Image.new("RGB", (width, height), background)
        except (MemoryError, ValueError) as e:
            raise SurfaceUnavailable(f"could not allocate {width}x{height} surface") from e

    @property
    def width(self) -> int:
        return self._image.width

    @property
    def height(self) -> int:
        return self._image.height

    @property
    def size(self) -> tuple[int, int]:
        return self._image.size

    @property
    def image(self) -> Image.Image:
        return self._image

    def draw(self) -> ImageDraw.ImageDraw:
        return ImageDraw.Draw(self._image)

    def fill(self, color: tuple[int, int, int]) -> None:
        self.draw().rectangle((0, 0, self.width, self.height), fill=color)

    def paste(self, source: Image.Image, *, fit: bool = False) -> None:
        """Copy ``source`` onto the surface at the origin.

        With ``fit`` the source is scaled down (aspect preserved) to fit.
        """
        if source.mode not in ("RGB", "RGBA"):
            source = source.convert("RGB")
        if fit and (source.width > self.width or source.height > self.height):
            source = source.copy()
            source.thumbnail(self.size)
        mask = source if source.mode == "RGBA" else None
        self._image.paste(source, (0, 0), mask)

    def encode(self, raster_format: RasterFormat = RasterFormat.PNG, quality: float = 0.95) -> bytes:
        buf = io.BytesIO()
        options: dict[str, object] = {}
        if raster_format.lossy:
            options["quality"] = max(1, min(100, int(round(quality * 100))))
        else:
            options["optimize"] = True
        try:
            self._image.save(buf, format=raster_format.pillow_format, **options)
        except (OSError, ValueError) as e:
            raise EncodeError(f"{raster_format.value} encoding failed: {e}") from e
        data = buf.getvalue()
        if not data:
            raise EncodeError(f"{raster_format.value} encoding produced no bytes")
        return data
