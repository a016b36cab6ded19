"""
HuePress Processing - Unified Application Entry Point
Mounts the derivative rendering service and the queue trigger under one FastAPI application
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.derivatives import app as derivatives_module
from shared.config import config
from shared.logging_utils import setup_logging

logger = setup_logging("huepress-processing")

derivatives_app = derivatives_module.app

app = FastAPI(
    title="HuePress Processing API",
    description="""
    Derivative generation for HuePress assets: watermarked thumbnails, social preview
    images and print PDFs, plus the background sweeper that drains the job backlog.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=derivatives_module.lifespan,
    dependencies=derivatives_app.router.dependencies,
    exception_handlers=derivatives_app.exception_handlers,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Service health and queue trigger endpoints",
        },
        {
            "name": "Derivatives",
            "description": "Synchronous thumbnail, OG image and PDF rendering",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes to exclude (internal FastAPI docs routes)
EXCLUDED_PATHS = {"/openapi.json", "/docs", "/docs/oauth2-redirect", "/redoc"}
HEALTH_PATHS = {"/health", "/wakeup"}

for route in derivatives_app.routes:
    if hasattr(route, "path") and hasattr(route, "endpoint"):
        if route.path in EXCLUDED_PATHS:
            continue
        route_kwargs = {
            "path": route.path,
            "endpoint": route.endpoint,
            "methods": route.methods,
            "tags": ["Health" if route.path in HEALTH_PATHS else "Derivatives"],
        }
        if hasattr(route, "name"):
            route_kwargs["name"] = route.name
        if hasattr(route, "response_model"):
            route_kwargs["response_model"] = route.response_model
        app.add_api_route(**route_kwargs)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with service information and API navigation"""
    return {
        "service": "HuePress Processing API",
        "version": "1.0.0",
        "endpoints": {
            "thumbnail": "/thumbnail",
            "og_image": "/og-image",
            "pdf": "/pdf",
            "health": "/health",
            "wakeup": "/wakeup",
        },
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_json": "/openapi.json",
        },
    }


if __name__ == "__main__":
    import uvicorn

    port = int(config.get("port", 4000))
    logger.info("Starting HuePress Processing on http://0.0.0.0:%s", port)
    uvicorn.run("app:app", host="0.0.0.0", port=port, log_level=str(config.get("log_level", "info")).lower())
