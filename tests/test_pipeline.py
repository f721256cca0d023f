import asyncio
import os

import pytest

from preview_service.conversion.adapters import GhostscriptSurface, load_pdfium_engine
from preview_service.conversion.config import PipelineConfig
from preview_service.conversion.engine import EngineLoader
from preview_service.conversion.interfaces import CaptureSupport
from preview_service.conversion.results import ConversionResult, Strategy
from preview_service.conversion.service import PreviewPipeline

from .fakes import (
    CrashingRenderer,
    EmptyRenderer,
    FakeEngine,
    ScriptedInitializer,
    SurfaceRecorder,
    fake_pdf,
    png_size,
)


def build(resources, *, initializer=None, surfaces=None, renderers=None, config=None):
    loader = EngineLoader(initializer or ScriptedInitializer())
    surfaces = surfaces or SurfaceRecorder(support=CaptureSupport.UNSUPPORTED)
    return PreviewPipeline(loader, resources, config, surface_factory=surfaces, renderers=renderers)


def test_well_formed_document_uses_native_rendering(resources):
    pipeline = build(resources)
    result = asyncio.run(pipeline.convert(fake_pdf(pages=10), "resume.pdf"))

    assert result.error_message is None
    assert result.strategy is Strategy.NATIVE
    assert result.preview_artifact.name == "resume.png"
    assert result.preview_artifact.media_type == "image/png"
    assert result.preview_artifact.size > 0


def test_corrupted_document_falls_back_to_synthetic(resources):
    surfaces = SurfaceRecorder(load_error="Error: /syntaxerror", support=CaptureSupport.UNSUPPORTED)
    pipeline = build(resources, surfaces=surfaces)

    result = asyncio.run(pipeline.convert(b"%PDF-1.7\n\x00\x13 truncated", "scan.PDF"))

    assert result.error_message is None
    assert result.strategy is Strategy.SYNTHETIC
    assert result.preview_artifact.name == "scan.png"
    assert surfaces.surfaces[0].closed
    assert resources.active == 0


def test_corrupted_document_without_ghostscript_falls_back_to_synthetic(resources):
    surfaces = GhostscriptSurface.factory(binary="no-such-ghostscript-binary")
    pipeline = build(resources, surfaces=surfaces)

    result = asyncio.run(pipeline.convert(b"%PDF-1.7\n1 0 obj << /Type /Cat", "scan.PDF"))

    assert result.error_message is None
    assert result.strategy is Strategy.SYNTHETIC
    assert not result.passthrough
    assert result.preview_artifact.name == "scan.png"
    assert resources.active == 0


def test_corrupted_document_with_pdfium_falls_back_to_synthetic(resources):
    pytest.importorskip("pypdfium2")
    loader = EngineLoader(load_pdfium_engine)
    surfaces = GhostscriptSurface.factory(binary="no-such-ghostscript-binary")
    pipeline = PreviewPipeline(loader, resources, surface_factory=surfaces)
    try:
        result = asyncio.run(pipeline.convert(b"%PDF-1.7\n1 0 obj << /Type /Cat", "scan.PDF"))
    finally:
        loader.shutdown()

    assert result.strategy is Strategy.SYNTHETIC
    assert result.preview_artifact.media_type == "image/png"


def test_non_document_upload_is_never_passed_through(resources):
    surfaces = GhostscriptSurface.factory(binary="no-such-ghostscript-binary")
    pipeline = build(resources, surfaces=surfaces)
    result = asyncio.run(
        pipeline.convert(b"PK\x03\x04 not a pdf", "notes.docx", strategies=[Strategy.CAPTURE, Strategy.SYNTHETIC])
    )
    assert result.strategy is Strategy.SYNTHETIC


def test_readable_document_is_still_passed_through_without_ghostscript(resources):
    engine = FakeEngine(render_error=RuntimeError("unsupported shading"))
    surfaces = GhostscriptSurface.factory(binary="no-such-ghostscript-binary")
    pipeline = build(resources, initializer=ScriptedInitializer(engine), surfaces=surfaces)
    result = asyncio.run(pipeline.convert(fake_pdf(), "resume.pdf"))
    assert result.passthrough
    assert result.strategy is Strategy.CAPTURE


def test_engine_recovers_after_failed_initializations(resources):
    init = ScriptedInitializer(failures=2)
    pipeline = build(resources, initializer=init)

    async def scenario():
        return [await pipeline.convert(fake_pdf(), f"resume-{i}.pdf") for i in range(3)]

    first, second, third = asyncio.run(scenario())

    assert first.strategy in (Strategy.CAPTURE, Strategy.SYNTHETIC)
    assert second.strategy in (Strategy.CAPTURE, Strategy.SYNTHETIC)
    assert first.ok and second.ok
    assert third.strategy is Strategy.NATIVE
    assert init.calls == 3


def test_passthrough_is_preferred_over_synthetic(resources):
    engine = FakeEngine(render_error=RuntimeError("unsupported shading"))
    pipeline = build(resources, initializer=ScriptedInitializer(engine))
    result = asyncio.run(pipeline.convert(fake_pdf(), "resume.pdf"))
    assert result.passthrough
    assert result.strategy is Strategy.CAPTURE


def test_crashing_strategy_does_not_stop_the_pipeline(resources):
    pipeline = build(resources, renderers={Strategy.NATIVE: CrashingRenderer()})
    result = asyncio.run(
        pipeline.convert(fake_pdf(), "resume.pdf", strategies=[Strategy.NATIVE, Strategy.SYNTHETIC])
    )
    assert result.ok
    assert result.strategy is Strategy.SYNTHETIC


def test_empty_artifact_counts_as_failure(resources):
    pipeline = build(resources, renderers={Strategy.CAPTURE: EmptyRenderer()})
    result = asyncio.run(
        pipeline.convert(b"junk", "resume.pdf", strategies=[Strategy.CAPTURE, Strategy.SYNTHETIC])
    )
    assert result.strategy is Strategy.SYNTHETIC


def test_exhaustion_returns_the_last_error(resources):
    surfaces = SurfaceRecorder(load_error="Error: /undefined")
    pipeline = build(resources, surfaces=surfaces, renderers={Strategy.NATIVE: CrashingRenderer()})
    result = asyncio.run(
        pipeline.convert(b"junk", "resume.pdf", strategies=[Strategy.CAPTURE, Strategy.NATIVE])
    )
    assert not result.ok
    assert result.preview_artifact is None
    assert result.error_message == "RuntimeError: renderer exploded"
    assert result.strategy is Strategy.NATIVE


def test_configured_order_is_used(resources):
    config = PipelineConfig(strategies=(Strategy.SYNTHETIC,))
    pipeline = build(resources, config=config)
    result = asyncio.run(pipeline.convert(fake_pdf(), "resume.pdf"))
    assert result.strategy is Strategy.SYNTHETIC
    assert png_size(result.preview_artifact.data) == (800, 1130)


def test_empty_document_is_never_passed_through(resources):
    result = asyncio.run(build(resources).convert(b"", "empty.pdf"))
    assert result.strategy is Strategy.SYNTHETIC


def test_empty_strategy_list_is_a_failure(resources):
    result = asyncio.run(build(resources).convert(fake_pdf(), "resume.pdf", strategies=[]))
    assert not result.ok


@pytest.mark.parametrize(
    "payload",
    [b"", b"\x00" * 64, b"%PDF-", fake_pdf(pages=0), fake_pdf()[:20], os.urandom(256)],
)
def test_convert_always_returns_a_result(resources, payload):
    result = asyncio.run(build(resources).convert(payload, "upload.pdf"))
    assert isinstance(result, ConversionResult)
    assert (result.preview_artifact is None) != (result.error_message is None)
    assert resources.active == 0


def test_concurrent_conversions_share_one_engine(resources):
    init = ScriptedInitializer(delay=0.05)
    pipeline = build(resources, initializer=init)

    async def scenario():
        return await asyncio.gather(*(pipeline.convert(fake_pdf(), f"batch-{i}.pdf") for i in range(5)))

    results = asyncio.run(scenario())
    assert init.calls == 1
    assert all(r.strategy is Strategy.NATIVE for r in results)
    assert [r.preview_artifact.name for r in results] == [f"batch-{i}.png" for i in range(5)]
