"""
Domain layer for document previews.
Provides the tiered document-to-raster pipeline (native engine rendering,
sandboxed capture, synthetic placeholder) and a service that stores uploads
with their previews, abstracting storage and rendering engines so front-ends
(HTTP or others) can use the same core logic.
"""

from .config import PipelineConfig
from .engine import EngineHandle, EngineLoader
from .interfaces import CaptureSupport, DocumentEngine, EmbeddingSurface, StorageGateway
from .resources import ResourceManager
from .results import Artifact, ConversionResult, PassthroughResult, RasterFormat, Strategy, artifact_name
from .service import DocumentRecord, PreviewPipeline, PreviewService
