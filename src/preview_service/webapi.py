import os
from pathlib import Path

from fastapi import FastAPI, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse

from preview_service.conversion import PipelineConfig, PreviewPipeline, PreviewService
from preview_service.conversion.adapters import LocalStorage
from preview_service.conversion.service import EmptyUpload, UploadTooLarge
from preview_service.logging_config import configure_logging

app = FastAPI(
    title="Document Preview Service",
    version=os.getenv("PREVIEW_SERVICE_VERSION", "0.1.0"),
    description=(
        "RESTful API that stores uploaded documents and generates a raster "
        "preview for thumbnailing and display."
    ),
)

# Global configuration defaults
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))
ALLOWED_MIME = set(
    (os.getenv("ALLOWED_MIME", "application/pdf,application/x-pdf")).split(",")
)
DATA_DIR = Path(os.getenv("DATA_DIR", "./data")).resolve()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}

SERVICE: PreviewService | None = None


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.on_event("startup")
async def _startup() -> None:
    configure_logging(LOG_LEVEL, json_logs=JSON_LOGS)
    (DATA_DIR / "documents").mkdir(parents=True, exist_ok=True)
    global SERVICE
    storage = LocalStorage(str(DATA_DIR))
    pipeline = PreviewPipeline.from_config(PipelineConfig.from_env())
    SERVICE = PreviewService(storage=storage, pipeline=pipeline)


@app.on_event("shutdown")
async def _shutdown() -> None:
    global SERVICE
    if SERVICE is not None:
        SERVICE.pipeline.loader.shutdown()
        SERVICE = None


def _service() -> PreviewService:
    if SERVICE is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "service not started"})
    return SERVICE


def _load_record(document_id: str) -> dict[str, object]:
    try:
        return _service().load_record(document_id).data
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "document not found"})


@app.post("/documents", status_code=status.HTTP_201_CREATED)
async def create_document(file: UploadFile = File(...)) -> JSONResponse:
    """Store an uploaded document and attach a preview image to it.

    Accepts multipart/form-data with a single required part named "file".
    Preview problems are reported in the record's ``preview_error`` field and
    never fail the upload.
    """
    ct = (file.content_type or "").strip().lower()
    fn = (file.filename or "").lower()
    if ct and ALLOWED_MIME and ct not in ALLOWED_MIME:
        # Some clients label PDFs as octet-stream; trust the extension then.
        if not (ct == "application/octet-stream" and fn.endswith(".pdf")):
            raise HTTPException(status_code=415, detail={"code": "unsupported_media_type", "message": f"content-type {file.content_type} not allowed"})

    service = _service()

    async def read_chunk(n: int) -> bytes:
        return await file.read(n)

    try:
        record = await service.ingest_upload(
            filename=file.filename or "upload",
            content_type="application/pdf",
            reader=read_chunk,
            max_upload_mb=MAX_UPLOAD_MB,
        )
    except UploadTooLarge as e:
        raise HTTPException(status_code=413, detail={"code": "payload_too_large", "message": str(e)})
    except EmptyUpload as e:
        raise HTTPException(status_code=400, detail={"code": "empty_upload", "message": str(e)})

    document_id = record.id
    body = {
        **_public(record.data),
        "links": {
            "self": f"/documents/{document_id}",
            "preview": f"/documents/{document_id}/preview",
        },
    }
    headers = {"Location": f"/documents/{document_id}"}
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body, headers=headers)


@app.get("/documents/{document_id}")
async def get_document(document_id: str) -> JSONResponse:
    return JSONResponse(content=_public(_load_record(document_id)))


@app.get("/documents/{document_id}/preview")
async def get_preview(document_id: str) -> FileResponse:
    """Serve the preview image, or the original document for passthrough previews."""
    record = _load_record(document_id)
    preview_uri = record.get("preview_uri")
    if not preview_uri or not Path(str(preview_uri)).exists():
        raise HTTPException(status_code=404, detail={"code": "no_preview", "message": "preview not available"})
    return FileResponse(
        str(preview_uri),
        media_type=str(record.get("preview_media_type") or "application/octet-stream"),
        filename=str(record.get("preview_name") or Path(str(preview_uri)).name),
        content_disposition_type="inline",
    )


def _public(record: dict[str, object]) -> dict[str, object]:
    # Storage paths are internal.
    return {k: v for k, v in record.items() if k not in {"document_uri", "preview_uri"}}


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("preview_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
