import os
from dataclasses import dataclass

from .results import DEFAULT_ORDER, RasterFormat, Strategy

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class PipelineConfig:
    """Preview pipeline settings.

    Values are passed explicitly; ``from_env`` is the only place environment
    variables are read.
    """

    strategies: tuple[Strategy, ...] = DEFAULT_ORDER
    scale: float = 1.5
    quality: float = 0.95
    raster_format: RasterFormat = RasterFormat.PNG
    capture_timeout_s: float = 2.0
    capture_width: int = 800
    capture_height: int = 1100
    allow_passthrough: bool = True
    ghostscript_binary: str = "gs"
    tmp_dir: str | None = None

    def __post_init__(self) -> None:
        if not self.strategies:
            raise ValueError("at least one preview strategy is required")
        if self.scale <= 0:
            raise ValueError("scale must be positive")
        if not 0 < self.quality <= 1:
            raise ValueError("quality must be in (0, 1]")
        if self.capture_timeout_s <= 0:
            raise ValueError("capture timeout must be positive")
        if self.capture_width <= 0 or self.capture_height <= 0:
            raise ValueError("capture surface size must be positive")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            strategies=Strategy.parse_order(os.getenv("PREVIEW_STRATEGIES", "native,capture,synthetic")),
            scale=float(os.getenv("PREVIEW_SCALE", "1.5")),
            quality=float(os.getenv("PREVIEW_QUALITY", "0.95")),
            raster_format=RasterFormat(os.getenv("PREVIEW_FORMAT", "png").strip().lower()),
            capture_timeout_s=int(os.getenv("PREVIEW_CAPTURE_TIMEOUT_MS", "2000")) / 1000.0,
            allow_passthrough=os.getenv("PREVIEW_ALLOW_PASSTHROUGH", "true").lower() in _TRUE,
            ghostscript_binary=os.getenv("PREVIEW_GS_BINARY", "gs"),
            tmp_dir=os.getenv("PREVIEW_TMP_DIR") or None,
        )
