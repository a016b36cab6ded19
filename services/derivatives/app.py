"""FastAPI app for the derivative rendering service."""

from contextlib import asynccontextmanager
from functools import partial

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.auth import verify_internal_secret
from services.derivatives.service import DEFAULT_PDF_FILENAME, DerivativeService
from services.derivatives.upload import validate_upload_url
from services.queue import QueueProcessor
from shared.config import config
from shared.enums import ArtifactKind
from shared.errors import ValidationError
from shared.logging_utils import setup_logging
from shared.models import ImageResponse, OgImageRequest, PdfRequest, PdfResponse, ThumbnailRequest
from shared.response_models import AcceptedResponse, ErrorResponse, HealthResponse, WakeupResponse

logger = setup_logging("derivative-api")

SERVICE_NAME = "huepress-processing"

service = DerivativeService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    processor = QueueProcessor(renderer=service)
    app.state.queue_processor = processor
    if config.get_pipeline_value("queue.sweep_on_startup", True):
        logger.info("Running initial queue sweep")
        processor.trigger()
    yield
    await processor.shutdown()


app = FastAPI(
    title="Derivative Rendering Service",
    description="Thumbnail, social image and print PDF generation from sanitized SVG",
    version="1.0.0",
    lifespan=lifespan,
    dependencies=[Depends(verify_internal_secret)],
    responses={202: {"model": AcceptedResponse}, 400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request body") if errors else "Invalid request body"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(ValidationError)
async def svg_validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})


def get_queue_processor(request: Request) -> QueueProcessor:
    processor = getattr(request.app.state, "queue_processor", None)
    if processor is None:
        processor = QueueProcessor(renderer=service)
        request.app.state.queue_processor = processor
    return processor


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", service=SERVICE_NAME)


@app.get("/wakeup", response_model=WakeupResponse)
async def wakeup(request: Request, processor: QueueProcessor = Depends(get_queue_processor)) -> WakeupResponse:
    """Optionally rotate credentials, then start a sweep if none is running."""
    new_token = request.headers.get("X-Set-Internal-Token")
    if new_token:
        config.set("internal_api_token", new_token)
        logger.info("Updated INTERNAL_API_TOKEN via wakeup")
    new_secret = request.headers.get("X-Set-Auth-Secret")
    if new_secret:
        config.set("container_auth_secret", new_secret)
        logger.info("Updated CONTAINER_AUTH_SECRET via wakeup")

    logger.info("Wakeup received")
    was_processing = processor.is_processing
    if not was_processing:
        processor.trigger()
    return WakeupResponse(processing=was_processing)


def accepted(message: str) -> JSONResponse:
    return JSONResponse(status_code=202, content=AcceptedResponse(message=message).model_dump())


@app.post("/thumbnail", response_model=ImageResponse, response_model_by_alias=True)
async def create_thumbnail(request: ThumbnailRequest, background_tasks: BackgroundTasks):
    """Render a WebP thumbnail with the branded banner."""
    if not request.svg_content:
        raise HTTPException(status_code=400, detail="Missing svgContent")
    validate_upload_url(request.upload_url)
    if request.wants_async_upload():
        background_tasks.add_task(
            service.render_and_upload, ArtifactKind.THUMBNAIL, partial(service.thumbnail_buffer, request), request
        )
        return accepted("Thumbnail processing started")
    try:
        return await service.thumbnail_response(request)
    except ValidationError:
        raise
    except Exception as exc:
        logger.error("Thumbnail generation failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.post("/og-image", response_model=ImageResponse, response_model_by_alias=True)
async def create_og_image(request: OgImageRequest, background_tasks: BackgroundTasks):
    """Render the 1200x630 PNG social card."""
    if not request.svg_content and not request.thumbnail_base64:
        raise HTTPException(status_code=400, detail="svgContent is required")
    validate_upload_url(request.upload_url)
    if request.wants_async_upload():
        background_tasks.add_task(
            service.render_and_upload, ArtifactKind.OG, partial(service.og_image_buffer, request), request
        )
        return accepted("OG processing started")
    try:
        return await service.og_image_response(request)
    except ValidationError:
        raise
    except Exception as exc:
        logger.error("OG image generation failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.post("/pdf", response_model=PdfResponse, response_model_by_alias=True)
async def create_pdf(request: PdfRequest, background_tasks: BackgroundTasks):
    """Render the print PDF."""
    if not request.svg_content:
        raise HTTPException(status_code=400, detail="Missing svgContent")
    validate_upload_url(request.upload_url)
    if request.wants_async_upload():
        background_tasks.add_task(
            service.render_and_upload,
            ArtifactKind.PDF,
            partial(service.pdf_buffer, request),
            request,
            filename=request.filename or DEFAULT_PDF_FILENAME,
        )
        return accepted("PDF processing started")
    try:
        return await service.pdf_response(request)
    except ValidationError:
        raise
    except Exception as exc:
        logger.error("PDF generation failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
