import logging
import os
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from prometheus_client import make_asgi_app as make_prom_app
from starlette.exceptions import HTTPException as StarletteHTTPException

from providers.base import TryOnPredictor
from providers.gradio_vton import GradioTryOn
from .config import RelayConfig, settings
from .logging_config import setup_logging
from .metrics import tryon_requests
from .models import ErrorResponse, TryOnResponse
from .pipeline_runner import run_tryon_job
from .storage import ImageStager, build_stager
from .validators import ValidationError, read_image_pair, upload_size_guard

logger = logging.getLogger(__name__)

WEB_DIR = os.path.normpath(os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "..", "frontend", "web"))
SCRATCH_ROUTE = "/tmp"
SCRATCH_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "X-Requested-With, Content-Type, Accept",
}


def _error(status_code: int, error: str, details: Optional[str] = None, request_id: Optional[str] = None) -> JSONResponse:
    headers = {"X-Request-ID": request_id} if request_id else None
    body = ErrorResponse(error=error, details=details).model_dump(exclude_none=True)
    return JSONResponse(body, status_code=status_code, headers=headers)


def create_app(
    cfg: Optional[RelayConfig] = None,
    stager: Optional[ImageStager] = None,
    predictor: Optional[TryOnPredictor] = None,
) -> FastAPI:
    cfg = cfg or RelayConfig.from_settings(settings)
    stager = stager or build_stager(cfg)
    predictor = predictor or GradioTryOn.from_config(cfg)

    app = FastAPI(title="AI Try-On Relay", version="0.1.0")
    app.state.config = cfg
    app.state.stager = stager
    app.state.predictor = predictor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.cors_origins),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    if cfg.staging_backend == "tempdir":
        os.makedirs(cfg.scratch_dir, exist_ok=True)
        app.mount(SCRATCH_ROUTE, StaticFiles(directory=cfg.scratch_dir), name="scratch")

        @app.middleware("http")
        async def _scratch_cors(request: Request, call_next):
            if not request.url.path.startswith(SCRATCH_ROUTE + "/"):
                return await call_next(request)
            if request.method == "OPTIONS":
                return Response(status_code=204, headers=SCRATCH_CORS_HEADERS)
            response = await call_next(request)
            response.headers.update(SCRATCH_CORS_HEADERS)
            return response

    if os.path.isdir(WEB_DIR):
        app.mount("/web", StaticFiles(directory=WEB_DIR, html=True), name="web")

        @app.get("/", include_in_schema=False)
        def index() -> FileResponse:
            return FileResponse(os.path.join(WEB_DIR, "index.html"))

    app.mount("/metrics", make_prom_app())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        body = ErrorResponse(error=str(exc.detail)).model_dump(exclude_none=True)
        return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.on_event("startup")
    def _startup() -> None:
        setup_logging()
        logger.info("Relaying to %s via %s staging", cfg.predictor_space, cfg.staging_backend)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/api/try-on", dependencies=[Depends(upload_size_guard(cfg.max_upload_mb))])
    async def try_on(request: Request):
        request_id = uuid.uuid4().hex
        try:
            form = await request.form()
        except Exception:  # noqa: BLE001
            logger.info("Rejected malformed multipart body", extra={"request_id": request_id})
            tryon_requests.labels(outcome="invalid").inc()
            return _error(400, "Invalid multipart form data", request_id=request_id)

        try:
            person, garment = await read_image_pair(form)
        except ValidationError as e:
            tryon_requests.labels(outcome="invalid").inc()
            return _error(400, str(e), request_id=request_id)
        finally:
            await form.close()

        try:
            result = await run_in_threadpool(
                run_tryon_job, person, garment, stager, predictor, request_id=request_id
            )
        except Exception as e:  # noqa: BLE001
            logger.error("Error processing images: %s", e, exc_info=True, extra={"request_id": request_id})
            tryon_requests.labels(outcome="failed").inc()
            return _error(500, "Internal server error", details=str(e), request_id=request_id)

        tryon_requests.labels(outcome="success").inc()
        body = TryOnResponse(resultImage=result.result_image_url).model_dump()
        return JSONResponse(body, status_code=200, headers={"X-Request-ID": request_id})

    return app


app = create_app()
