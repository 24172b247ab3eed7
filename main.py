import io
import logging
import os
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from config import Settings
from errors import CertificateError, NotFoundError, PreconditionError, RenderError
from extract_pptx_fields import extract_layout
from fields import map_fields
from generator import BatchGenerator, BatchResult
from layouts import FieldPosition, Layout, LayoutStore
from ledger import CertificateLedger, CertificateRecord, group_by_date
from mailer import EmailConfig, SmtpMailer, notify_all
from persistence import JsonDocument
from rendering import PillowRasterizer, build_document
from spreadsheet import SPREADSHEET_EXTENSIONS, columns_of, preview_rows, read_records

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("certportal.api")

router = APIRouter()


# ----------- Data models -----------

class SavePositionsRequest(BaseModel):
    templateId: str
    fields: Dict[str, FieldPosition]             # field name → position on the template


class GenerateRequest(BaseModel):
    filePath: str                                # path returned by /upload-excel
    templateId: str
    columnMapping: Dict[str, str]                # template field → spreadsheet column


class BulkEmailRequest(BaseModel):
    emailConfig: EmailConfig = EmailConfig()
    subject: Optional[str] = None
    message: Optional[str] = None


# ----------- Helpers -----------

def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _uploaded_path(settings: Settings, file_path: str) -> str:
    """
    Only files saved by /upload-excel may be read back.
    """
    upload_root = os.path.realpath(settings.upload_dir)
    resolved = os.path.realpath(file_path)
    if not resolved.startswith(upload_root + os.sep):
        raise PreconditionError("filePath must point to an uploaded spreadsheet")
    if not os.path.isfile(resolved):
        raise PreconditionError("Uploaded file not found, please upload it again")
    return resolved


def _load_batch_inputs(request: Request, payload: GenerateRequest) -> Tuple[List[Dict[str, Any]], Layout, str, bytes]:
    settings = _settings(request)
    layouts: LayoutStore = request.app.state.layouts

    path = _uploaded_path(settings, payload.filePath)
    try:
        records = read_records(path)
    except Exception as e:
        raise PreconditionError(f"Error reading Excel file: {e}") from e
    if not records:
        raise PreconditionError("No data found in Excel file.")

    layout = layouts.get_layout(payload.templateId)
    if layout is None:
        raise PreconditionError("Template positions not set! Please use the visual editor first.")

    templates = layouts.discover(settings.templates_dir)
    template_file = templates.get(payload.templateId)
    if not template_file:
        raise PreconditionError("Template image not found")

    try:
        with open(os.path.join(settings.templates_dir, template_file), "rb") as f:
            template_image = f.read()
    except OSError as e:
        raise PreconditionError("Template image not found or corrupted") from e

    return records, layout, template_file, template_image


def write_summary(
    path: str,
    result: BatchResult,
    template_id: str,
    template_file: str,
    layout: Layout,
) -> None:
    lines = [
        "CERTIFICATE IMAGE GENERATION SUMMARY",
        "====================================",
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Template: {template_file}",
        f"Template ID: {template_id}",
        f"Total Certificates: {len(result.records)}",
        f"Skipped Rows: {result.skippedCount}",
        f"Email Column: {result.emailColumn}",
        "",
        "GENERATED FILES:",
    ]
    lines += [f"{i}. {r.file_name}" for i, r in enumerate(result.records, start=1)]
    lines += ["", "EMAIL ADDRESSES:"]
    lines += [f"{i}. {r.email}" for i, r in enumerate(result.records, start=1)]
    lines += ["", "FIELD POSITIONS:"]
    lines += [
        f"{name}: X={pos.x}%, Y={pos.y}% ({pos.align} aligned, {pos.fontSize}px)"
        for name, pos in layout.items()
    ]

    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    except OSError as e:
        logger.error("Error writing summary %s: %s", path, e)


def _portal_entry(record: CertificateRecord) -> Dict[str, Any]:
    entry = record.to_json()
    entry["downloadUrl"] = f"/certificates/{record.file_name}"
    return entry


# ----------- Endpoints -----------

@router.post("/upload-excel")
async def upload_excel(request: Request, excel: UploadFile = File(...)):
    """
    Store an uploaded spreadsheet and return a preview of its rows.
    """
    settings = _settings(request)
    filename = os.path.basename(excel.filename or "")
    if not filename.lower().endswith(SPREADSHEET_EXTENSIONS):
        raise HTTPException(status_code=400, detail="Spreadsheet must be .xlsx, .xls or .csv")

    contents = await excel.read()
    path = os.path.join(settings.upload_dir, f"{int(time.time() * 1000)}-{filename}")
    with open(path, "wb") as f:
        f.write(contents)
    logger.info("Excel file uploaded: %s", filename)

    # One row past the limit is enough to know the file is too large
    try:
        records = read_records(path, limit=settings.max_rows + 1)
    except Exception as e:
        os.remove(path)
        raise HTTPException(status_code=400, detail=f"Error reading Excel file: {e}")

    if len(records) > settings.max_rows:
        os.remove(path)
        raise HTTPException(
            status_code=400,
            detail=f"Too many rows (max {settings.max_rows})",
        )

    return {
        "success": True,
        "data": preview_rows(records, 5),
        "columns": columns_of(records),
        "totalRows": len(records),
        "filePath": path,
    }


@router.get("/templates")
def list_templates(request: Request):
    settings = _settings(request)
    layouts: LayoutStore = request.app.state.layouts

    templates = {}
    for template_id, image in layouts.discover(settings.templates_dir).items():
        templates[template_id] = {
            "name": os.path.splitext(image)[0],
            "image": image,
            "width": settings.canvas_width,
            "height": settings.canvas_height,
            "fields": layouts.raw_fields(template_id),
        }

    logger.info("Templates loaded: %s", list(templates))
    return {"success": True, "templates": templates, "count": len(templates)}


@router.post("/save-positions")
def save_positions(request: Request, payload: SavePositionsRequest):
    request.app.state.layouts.save_layout(payload.templateId, payload.fields)
    return {"success": True, "message": "Positions saved successfully"}


@router.post("/templates/{template_id}/import-pptx")
async def import_pptx_layout(request: Request, template_id: str, pptx: UploadFile = File(...)):
    """
    Derive a template's field positions from the text boxes of a PowerPoint slide.
    """
    settings = _settings(request)
    if not (pptx.filename or "").lower().endswith(".pptx"):
        raise HTTPException(status_code=400, detail="Layout file must be .pptx")

    contents = await pptx.read()
    try:
        layout = extract_layout(io.BytesIO(contents), canvas_height=settings.canvas_height)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid or corrupted PPTX file")

    if not layout:
        raise PreconditionError("No text boxes found in the first slide")

    request.app.state.layouts.save_layout(template_id, layout)
    return {
        "success": True,
        "templateId": template_id,
        "fields": {name: pos.model_dump() for name, pos in layout.items()},
    }


@router.post("/preview-certificate")
def preview_certificate(request: Request, payload: GenerateRequest):
    """
    Render the first row only. Nothing is added to the ledger.
    """
    settings = _settings(request)
    records, layout, _, template_image = _load_batch_inputs(request, payload)

    sample = map_fields(payload.columnMapping, records[0])
    document = build_document(template_image, layout, sample, settings.canvas_width, settings.canvas_height)
    try:
        png = request.app.state.rasterizer.rasterize(document)
    except Exception as e:
        logger.exception("Preview generation failed")
        raise RenderError(f"Preview generation failed: {e}") from e

    preview_name = f"preview_{int(time.time() * 1000)}.png"
    preview_path = os.path.join(settings.generated_dir, preview_name)
    with open(preview_path, "wb") as f:
        f.write(png)

    logger.info("Preview generated: %s", preview_path)
    return {
        "success": True,
        "message": "Preview generated successfully!",
        "previewImage": preview_path,
        "previewUrl": f"/downloads/{preview_name}",
        "sampleData": sample,
    }


@router.post("/generate-certificates")
def generate_certificates(request: Request, payload: GenerateRequest):
    settings = _settings(request)
    generator: BatchGenerator = request.app.state.generator

    logger.info("Starting certificate generation for %s", payload.templateId)
    records, layout, template_file, template_image = _load_batch_inputs(request, payload)

    result = generator.generate(
        records,
        layout,
        payload.columnMapping,
        template_image,
        payload.templateId,
        template_file,
    )

    summary_path = os.path.join(settings.generated_dir, f"summary_{result.batchId}.txt")
    write_summary(summary_path, result, payload.templateId, template_file, layout)

    files = [r.file_name for r in result.records]
    return {
        "success": True,
        "message": f"{len(files)} certificate images generated successfully!",
        "files": {
            "certificates": files,
            "summary": summary_path,
            "folder": settings.certificates_dir + "/",
        },
        "certificatesCount": len(files),
        "skippedCount": result.skippedCount,
        "emailColumn": result.emailColumn,
    }


@router.get("/portal/certificate/{email}")
def portal_certificates(request: Request, email: str):
    """
    All certificates issued to an email address, grouped by generation date.
    """
    settings = _settings(request)
    ledger: CertificateLedger = request.app.state.ledger

    matches = ledger.find_by_email(email)
    if not matches:
        raise NotFoundError("No certificates found for this email address.")

    available = [
        r for r in matches
        if os.path.exists(os.path.join(settings.certificates_dir, r.file_name))
    ]
    if not available:
        raise NotFoundError("Certificate files not found.")

    grouped = {
        day: [_portal_entry(r) for r in records]
        for day, records in group_by_date(available).items()
    }
    return {
        "success": True,
        "email": email.lower(),
        "totalCertificates": len(available),
        "certificates": [_portal_entry(r) for r in available],
        "groupedByDate": grouped,
    }


@router.post("/send-bulk-emails")
def send_bulk_emails(request: Request, payload: BulkEmailRequest):
    settings = _settings(request)
    ledger: CertificateLedger = request.app.state.ledger

    snapshot = ledger.snapshot()
    if not snapshot:
        raise PreconditionError("No certificates found! Generate certificates first.")

    logger.info("Starting bulk email sending to %d record(s)", len(snapshot))
    mailer = request.app.state.mailer_factory(settings, payload.emailConfig)
    results = notify_all(snapshot, mailer, settings.certificates_dir, payload.subject, payload.message)

    sent = sum(1 for r in results if r.status == "sent")
    return {
        "success": True,
        "message": "Bulk email completed!",
        "results": [r.model_dump(exclude_none=True) for r in results],
        "sent": sent,
        "failed": len(results) - sent,
        "skipped": len(snapshot) - len(results),
    }


@router.get("/health")
def health_check(request: Request):
    settings = _settings(request)
    return {
        "status": "ok",
        "server": "Certificate generator with email portal",
        "templates": len(request.app.state.layouts.discover(settings.templates_dir)),
        "certificates": len(request.app.state.ledger),
    }


# ----------- App factory -----------

async def certificate_error_handler(request: Request, exc: CertificateError):
    logger.warning("%s: %s", type(exc).__name__, exc)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


def create_app(
    settings: Optional[Settings] = None,
    mailer_factory: Optional[Callable[[Settings, EmailConfig], Any]] = None,
    rasterizer: Optional[PillowRasterizer] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    settings.ensure_dirs()

    app = FastAPI(title="Certificate Portal")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    rasterizer = rasterizer or PillowRasterizer(font_file=settings.font_file, fill=settings.text_fill)
    ledger = CertificateLedger(JsonDocument(settings.ledger_path))

    app.state.settings = settings
    app.state.layouts = LayoutStore(JsonDocument(settings.layouts_path))
    app.state.ledger = ledger
    app.state.rasterizer = rasterizer
    app.state.generator = BatchGenerator(
        ledger,
        settings.certificates_dir,
        rasterizer=rasterizer,
        canvas_width=settings.canvas_width,
        canvas_height=settings.canvas_height,
    )
    app.state.mailer_factory = mailer_factory or SmtpMailer.from_settings

    app.add_exception_handler(CertificateError, certificate_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)

    app.mount("/certificates", StaticFiles(directory=settings.certificates_dir), name="certificates")
    app.mount("/downloads", StaticFiles(directory=settings.generated_dir), name="downloads")
    app.mount("/templates-files", StaticFiles(directory=settings.templates_dir), name="templates-files")

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "5000")),
        reload=True,
        reload_dirs=["."]
    )
