import logging
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Config
from .db import get_session, init_db, make_engine
from .errors import CrimeReportError
from .schemas import (
    EmergencyIn,
    EmergencyStatusIn,
    ReportStatusIn,
    emergency_out,
    evidence_out,
    failure,
    ok,
    report_out,
    status_update_out,
)
from .services.emergencies import EmergencyService
from .services.media import stage_uploads, uploader_from_config
from .services.proximity import find_nearby
from .services.reports import ReportService

logger = logging.getLogger("crimereport")

LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'

router = APIRouter(prefix="/api")


def configure_logging(log_file: Optional[Path] = None, level=logging.INFO):
    logger.setLevel(level)
    if logger.handlers:
        return
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    logger.addHandler(console)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)


def get_report_service(request: Request, session=Depends(get_session)):
    return ReportService(session, request.app.state.uploader)


def get_emergency_service(session=Depends(get_session)):
    return EmergencyService(session)


@router.get("/health")
def health():
    return {"success": True, "status": "ok"}


@router.post("/reports", status_code=201)
def create_report(
    request: Request,
    report_type: Optional[str] = Form(None, alias="type"),
    description: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    detailed_address: Optional[str] = Form(None, alias="detailedAddress"),
    contact_email: Optional[str] = Form(None, alias="contactEmail"),
    contact_phone: Optional[str] = Form(None, alias="contactPhone"),
    evidence: Optional[List[UploadFile]] = File(None),
    service: ReportService = Depends(get_report_service),
):
    files = stage_uploads(evidence or [], request.app.state.staging_dir)
    report, skipped = service.submit(
        {
            "type": report_type,
            "description": description,
            "location": location,
            "latitude": latitude,
            "longitude": longitude,
            "detailedAddress": detailed_address,
            "contactEmail": contact_email,
            "contactPhone": contact_phone,
        },
        files,
    )
    return ok({
        "trackingNumber": report.tracking_number,
        "status": report.status.value,
        "evidence": [evidence_out(e) for e in service.evidence(report)],
        "skippedFiles": skipped,
        "message": "Report created successfully. Keep your tracking number for future reference.",
    })


# declared before /reports/{tracking_number} so "nearby" is not taken for a tracking number
@router.get("/reports/nearby")
def nearby_reports(
    latitude: Optional[str] = None,
    longitude: Optional[str] = None,
    radius: Optional[str] = None,
    session=Depends(get_session),
):
    if radius is None or not radius.strip():
        radius = Config.DEFAULT_RADIUS_KM
    matches = find_nearby(session, latitude, longitude, radius)
    return ok([
        report_out(report, evidence=report.evidence, distance=distance)
        for report, distance in matches
    ])


@router.get("/reports/{tracking_number}")
def get_report(tracking_number: str, service: ReportService = Depends(get_report_service)):
    report = service.get_by_tracking_number(tracking_number)
    return ok(report_out(report, service.evidence(report), service.history(report)))


@router.get("/reports")
def list_reports(status: Optional[str] = None, service: ReportService = Depends(get_report_service)):
    return ok([report_out(r, evidence=r.evidence) for r in service.list_all(status)])


@router.patch("/reports/{tracking_number}/status")
def update_report_status(
    tracking_number: str,
    body: ReportStatusIn,
    service: ReportService = Depends(get_report_service),
):
    report, update = service.update_status(tracking_number, body.status, body.comment)
    return ok({
        "trackingNumber": report.tracking_number,
        "status": report.status.value,
        "latestUpdate": status_update_out(update),
    })


@router.post("/emergency", status_code=201)
def create_emergency(body: EmergencyIn, service: EmergencyService = Depends(get_emergency_service)):
    emergency = service.report(body.description)
    return ok({
        "id": emergency.id,
        "status": emergency.status.value,
        "message": "Emergency report created successfully.",
    })


@router.patch("/emergency/{emergency_id}/status")
def update_emergency_status(
    emergency_id: int,
    body: EmergencyStatusIn,
    service: EmergencyService = Depends(get_emergency_service),
):
    emergency = service.update_status(emergency_id, body.status)
    return ok({"id": emergency.id, "status": emergency.status.value})


@router.get("/emergency")
def list_emergencies(status: Optional[str] = None, service: EmergencyService = Depends(get_emergency_service)):
    return ok([emergency_out(e) for e in service.list_all(status)])


def create_app(engine=None, uploader=None, staging_dir: Optional[Path] = None,
               upload_dir: Optional[Path] = None, debug: Optional[bool] = None) -> FastAPI:
    """Build the API.

    Every collaborator can be injected; missing ones are built from ``Config``.
    """
    debug = Config.DEBUG if debug is None else debug
    app = FastAPI(title="Crime Report API", docs_url="/api-docs")
    app.state.engine = engine if engine is not None else make_engine(Config.DATABASE_URL)
    app.state.uploader = uploader if uploader is not None else uploader_from_config()
    app.state.staging_dir = staging_dir or Config.STAGING_DIR

    upload_dir = upload_dir or Config.UPLOAD_DIR
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")

    @app.middleware("http")
    async def log_request_and_errors(request: Request, call_next):
        logger.info('%s %s', request.method, request.url.path)
        try:
            return await call_next(request)
        except Exception as exc:
            logger.exception('Error in %s %s', request.method, request.url.path)
            return JSONResponse(
                status_code=500,
                content=failure("Internal Server Error", str(exc) if debug else None),
            )

    # must stay the outermost middleware, after log_request_and_errors
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept"],
    )

    @app.exception_handler(CrimeReportError)
    async def crime_report_error(request: Request, exc: CrimeReportError):
        detail = None
        if debug and exc.status_code >= 500:
            detail = str(exc.__cause__ or exc)
        if exc.status_code >= 500:
            logger.error('%s %s failed: %s', request.method, request.url.path, exc.__cause__ or exc)
        return JSONResponse(status_code=exc.status_code, content=failure(exc.message, detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        return JSONResponse(status_code=400, content=failure(f"Invalid request: {fields}"))

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        message = "Route not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=failure(message))

    @app.on_event("startup")
    def startup():
        init_db(app.state.engine)

    app.include_router(router)
    return app


def run():
    import uvicorn

    Config.validate()
    configure_logging(Config.LOG_FILE)
    uvicorn.run(create_app(), host="0.0.0.0", port=Config.PORT)


if __name__ == "__main__":
    run()
