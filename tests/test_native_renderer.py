import asyncio
import io

import pytest

from preview_service.conversion.engine import EngineLoader
from preview_service.conversion.native import NativeRenderer
from preview_service.conversion.results import RasterFormat, Strategy

from .fakes import FakeEngine, ScriptedInitializer, fake_pdf, png_size


def test_renders_first_page_at_one_and_a_half_scale(loader, engine):
    renderer = NativeRenderer(loader)
    result = asyncio.run(renderer.render(fake_pdf(pages=10), "resume.pdf"))

    assert result.ok
    assert result.strategy is Strategy.NATIVE
    artifact = result.preview_artifact
    assert artifact.name == "resume.png"
    assert artifact.media_type == "image/png"
    assert png_size(artifact.data) == (918, 1188)
    assert engine.opened[0].closed


def test_malformed_bytes_are_a_parse_error(loader):
    result = asyncio.run(NativeRenderer(loader).render(b"this is not a pdf", "scan.PDF"))
    assert not result.ok
    assert result.preview_artifact is None
    assert result.error_message.startswith("ParseError")
    assert result.document_unreadable


def test_truncated_document_is_a_parse_error(loader):
    truncated = fake_pdf(pages=3)[:-6]
    result = asyncio.run(NativeRenderer(loader).render(truncated, "scan.PDF"))
    assert result.error_message.startswith("ParseError")


def test_empty_document_is_a_parse_error(loader):
    result = asyncio.run(NativeRenderer(loader).render(b"", "empty.pdf"))
    assert result.error_message == "ParseError: document is empty"


def test_zero_page_document_is_a_parse_error(loader):
    result = asyncio.run(NativeRenderer(loader).render(fake_pdf(pages=0), "blank.pdf"))
    assert result.error_message == "ParseError: document has no pages"


def test_render_fault_is_a_render_error():
    engine = FakeEngine(render_error=RuntimeError("bad content stream"))
    loader = EngineLoader(ScriptedInitializer(engine))
    result = asyncio.run(NativeRenderer(loader).render(fake_pdf(), "resume.pdf"))
    assert result.error_message.startswith("RenderError")
    assert "bad content stream" in result.error_message
    assert not result.document_unreadable
    assert engine.opened[0].closed


def test_engine_load_failure_is_captured():
    loader = EngineLoader(ScriptedInitializer(failures=1))
    result = asyncio.run(NativeRenderer(loader).render(fake_pdf(), "resume.pdf"))
    assert result.error_message.startswith("LoadError")


def test_oversized_viewport_is_surface_unavailable(loader):
    renderer = NativeRenderer(loader, scale=20.0)
    result = asyncio.run(renderer.render(fake_pdf(), "poster.pdf"))
    assert result.error_message.startswith("SurfaceUnavailable")


def test_jpeg_output():
    from PIL import Image

    loader = EngineLoader(ScriptedInitializer())
    renderer = NativeRenderer(loader, raster_format=RasterFormat.JPEG)
    result = asyncio.run(renderer.render(fake_pdf(), "resume.pdf"))
    assert result.preview_artifact.name == "resume.jpg"
    assert result.preview_artifact.media_type == "image/jpeg"
    with Image.open(io.BytesIO(result.preview_artifact.data)) as img:
        assert img.format == "JPEG"


def test_real_pdfium_engine_renders_generated_pdf():
    pdfium = pytest.importorskip("pypdfium2")
    from preview_service.conversion.adapters import load_pdfium_engine

    pdf = pdfium.PdfDocument.new()
    page = pdf.new_page(200, 100)
    page.close()
    buf = io.BytesIO()
    pdf.save(buf)
    pdf.close()

    loader = EngineLoader(load_pdfium_engine)
    try:
        result = asyncio.run(NativeRenderer(loader).render(buf.getvalue(), "generated.pdf"))
        garbage = asyncio.run(NativeRenderer(loader).render(b"%PDF-1.4 garbage", "broken.pdf"))
    finally:
        loader.shutdown()

    assert result.ok, result.error_message
    assert png_size(result.preview_artifact.data) == (300, 150)
    assert garbage.error_message.startswith("ParseError")
