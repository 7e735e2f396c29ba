"""
Room Preview API

FastAPI application providing endpoints for:
- /health: Health check
- /products: List storefront products
- /experience: Full pipeline (room photo + product → composite)

Run locally: uvicorn room_preview_api.main:app --port 10000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from room_preview_api import __version__
from room_preview_api.analyzer import SceneAnalyzer
from room_preview_api.composer import Composer
from room_preview_api.config import Config
from room_preview_api.db.catalog_client import CatalogClient
from room_preview_api.db.storage_client import StorageClient
from room_preview_api.errors import GENERIC_FAILURE_MESSAGE, PipelineError
from room_preview_api.generator import GenerationClient
from room_preview_api.models import ErrorResponse, HealthResponse, ProductListResponse

config = Config.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("=" * 50)
    logger.info("Room Preview API Starting")
    logger.info(f"Store: {config.SHOPIFY_STORE_DOMAIN or '(unset)'}")
    logger.info(f"Bucket: {config.GCS_BUCKET or '(unset)'}")
    missing = config.missing_required()
    if missing:
        logger.warning(f"Missing configuration, /experience will fail: {', '.join(missing)}")
    logger.info("=" * 50)

    yield

    # Shutdown
    for client in (getattr(app.state, "catalog", None), getattr(app.state, "storage", None)):
        if client is not None:
            await client.close()
    logger.info("Room Preview API Shutting Down")


# Create FastAPI app
app = FastAPI(
    title="Room Preview API",
    description="Place a catalog product inside a shopper's room photo",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_catalog(request: Request) -> CatalogClient:
    """Catalog client shared by every request, built on first use."""
    state = request.app.state
    if getattr(state, "catalog", None) is None:
        state.catalog = CatalogClient(config)
    return state.catalog


def get_composer(request: Request) -> Composer:
    """Pipeline shared by every request, built on first use."""
    state = request.app.state
    if getattr(state, "composer", None) is None:
        config.validate_required()
        state.storage = StorageClient(config)
        state.composer = Composer(
            storage=state.storage,
            catalog=get_catalog(request),
            analyzer=SceneAnalyzer(config),
            generator=GenerationClient(config),
        )
    return state.composer


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed [{exc.kind}]: {exc}")
    else:
        logger.info(f"{request.url.path} rejected [{exc.kind}]: {exc}")
    body = ErrorResponse(kind=exc.kind, message=exc.public_message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.url.path} failed with an unexpected error: {exc}")
    body = ErrorResponse(kind="InternalError", message=GENERIC_FAILURE_MESSAGE)
    return JSONResponse(status_code=500, content=body.model_dump())


@app.get("/", response_class=PlainTextResponse, tags=["System"])
async def root():
    return "Room Preview API running"


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(ok=True, time=datetime.now(timezone.utc))


@app.get("/products", response_model=ProductListResponse, tags=["Catalog"])
async def list_products(catalog: CatalogClient = Depends(get_catalog)):
    """List the first page of storefront products."""
    try:
        products = await catalog.list_products()
    except PipelineError as e:
        logger.error(f"Product listing failed: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": GENERIC_FAILURE_MESSAGE})
    return ProductListResponse(success=True, products=products)


@app.post("/experience", tags=["Experience"])
async def create_experience(
    roomImage: Optional[UploadFile] = File(None),
    productId: Optional[str] = Form(None),
    productName: Optional[str] = Form(None),
    idea: Optional[str] = Form(None),
    productUrl: Optional[str] = Form(None),
    composer: Composer = Depends(get_composer),
):
    """
    Full pipeline with a multipart room photo upload.

    Pipeline:
    1. Resolve the product and store the room photo
    2. Build the product cutout and embedding (best effort)
    3. Analyze the room, refine placement, rasterize the mask
    4. Generate the composite and store it with thumbnails

    Returns:
        Experience payload with before/after images and thumbnails
    """
    room_bytes = await roomImage.read() if roomImage is not None else None
    result = await composer.compose(
        room_image=room_bytes,
        product_id=productId,
        product_name=productName,
        idea=idea,
        product_url=productUrl,
    )
    return result.to_response()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
