"""
Experience Composer

This module runs the full room preview pipeline:
1. Validate the request and resolve the product in the catalog
2. Persist the room photo
3. Build the product cutout and visual embedding (optional stages)
4. Analyze the room, refine the placement and rasterize the edit mask
5. Generate the composite and persist it with thumbnails

Optional stages never abort the request: they yield Ok(value) or
Skipped(reason). Every other stage fails the request with a PipelineError.

Usage:
    result = await composer.compose(room_image=raw, product_id="123", idea="arriba")
"""

import io
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from room_preview_api.analyzer import SceneAnalyzer
from room_preview_api.db.catalog_client import CatalogClient
from room_preview_api.db.storage_client import StorageClient
from room_preview_api.errors import GenerationFailure, InputValidationError, MaskMismatchError
from room_preview_api.generator import GenerationClient
from room_preview_api.mask import mask_size, rasterize_analysis
from room_preview_api.models import ExperienceResult, Ok, Skipped, StageResult
from room_preview_api.placement import apply_refinement
from room_preview_api.prompts import NEGATIVE_PROMPT, build_generation_prompt, build_message

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_NAME = "tu producto"


def normalize_room_image(raw: bytes) -> tuple[bytes, tuple[int, int]]:
    """
    Decode the upload, apply EXIF orientation and re-encode as high quality JPEG.

    Returns:
        (jpeg_bytes, (width, height))

    Raises:
        InputValidationError: If the bytes are not a decodable image
    """
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img = ImageOps.exif_transpose(img).convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError):
        raise InputValidationError("La imagen del espacio no es válida.")
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=95, optimize=True)
    return buf.getvalue(), img.size


class Composer:
    """Sequences the pipeline stages for one request."""

    def __init__(
        self,
        storage: StorageClient,
        catalog: CatalogClient,
        analyzer: SceneAnalyzer,
        generator: GenerationClient,
    ):
        self.storage = storage
        self.catalog = catalog
        self.analyzer = analyzer
        self.generator = generator

    async def _optional(self, stage: str, run: Callable[[], Awaitable], skipped: dict[str, str]) -> StageResult:
        try:
            return Ok(value=await run())
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.warning(f"Optional stage '{stage}' skipped: {reason}")
            skipped[stage] = reason
            return Skipped(reason=reason)

    async def compose(
        self,
        room_image: Optional[bytes],
        product_id: Optional[str],
        product_name: Optional[str] = None,
        idea: Optional[str] = None,
        product_url: Optional[str] = None,
    ) -> ExperienceResult:
        """
        Full pipeline: validate → catalog → persist → enrich → analyze → mask → generate → persist.

        Returns:
            ExperienceResult for the shopper

        Raises:
            PipelineError: From any mandatory stage
        """
        started = time.monotonic()
        logger.info("=" * 50)
        logger.info(f"Starting Room Preview Pipeline (product={product_id!r}, idea={idea!r})")
        logger.info("=" * 50)

        # Step 1: Validate required inputs
        if not room_image:
            raise InputValidationError("Falta la imagen del espacio (roomImage).")
        if not product_id or not product_id.strip():
            raise InputValidationError("Falta el productId.")
        room_bytes, image_size = normalize_room_image(room_image)

        # Step 2: Resolve the product before any upload
        product = await self.catalog.resolve(product_id.strip())
        name = (product_name or "").strip() or product.title or DEFAULT_PRODUCT_NAME

        # Step 3: Persist the room photo
        room = await self.storage.upload_bytes(room_bytes, "rooms", "room")
        logger.info(f"Room image stored: {room.url} ({image_size[0]}x{image_size[1]})")

        skipped: dict[str, str] = {}

        # Step 4: Product cutout (optional)
        async def make_cutout() -> str:
            if not product.featuredImageUrl:
                raise ValueError("product has no featured image")
            raw_product = await self.storage.upload_url(product.featuredImageUrl, "products/raw", "product-original")
            return await self.storage.cutout(raw_product.publicId)

        cutout = await self._optional("cutout", make_cutout, skipped)
        reference_url = cutout.value if isinstance(cutout, Ok) else product.featuredImageUrl

        # Step 5: Product embedding (optional)
        async def make_embedding():
            if not reference_url:
                raise ValueError("no product image to describe")
            return await self.analyzer.extract_product_embedding(reference_url, name)

        embedding_result = await self._optional("embedding", make_embedding, skipped)
        embedding = embedding_result.value if isinstance(embedding_result, Ok) else None

        # Step 6: Analyze the room
        analysis = await self.analyzer.analyze_room(
            room.url,
            idea,
            product_image_url=reference_url,
            product_name=name,
            image_size=image_size,
        )

        # Step 7: Refine placement and rasterize the mask
        analysis = apply_refinement(analysis, product.productType, idea)
        mask_bytes = rasterize_analysis(analysis)
        if mask_size(mask_bytes) != image_size:
            raise MaskMismatchError(f"mask {mask_size(mask_bytes)} does not match room image {image_size}")
        logger.info(f"Final placement: {analysis.finalPlacement.model_dump()}")

        # Step 8: Generate
        prompt = build_generation_prompt(name, product.productType, analysis, embedding, idea)
        output_url = await self.generator.generate(
            room.url,
            mask_bytes,
            prompt,
            reference_image_url=reference_url,
            negative_prompt=NEGATIVE_PROMPT,
        )

        # Step 9: Persist the result and build thumbnails
        generated = await self.storage.upload_url(output_url, "generated", "room-generated")
        if not generated.url or generated.url == room.url:
            raise GenerationFailure("generated image is missing or identical to the room image")
        thumbnails = {
            "before": await self.storage.thumbnails(room.publicId),
            "after": await self.storage.thumbnails(generated.publicId),
        }

        # Step 10: Assemble
        result = ExperienceResult(
            sessionId=str(uuid.uuid4()),
            roomImageUrl=room.url,
            generatedImageUrl=generated.url,
            productUrl=product_url or product.onlineStoreUrl,
            productName=name,
            message=build_message(analysis.roomStyle, name, idea),
            analysis=analysis,
            thumbnails=thumbnails,
            embedding=embedding,
            createdAt=datetime.now(timezone.utc),
            skipped=skipped,
        )

        logger.info("=" * 50)
        logger.info(f"Experience {result.sessionId} complete in {(time.monotonic() - started) * 1000:.0f} ms")
        if skipped:
            logger.warning(f"Experience {result.sessionId} skipped optional stages: {skipped}")
        logger.info("=" * 50)
        return result
