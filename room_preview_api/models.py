"""
Pydantic models for the Room Preview application.

Defines data validation schemas for:
- Room analysis and placement geometry
- Catalog products and their visual embedding
- Generation jobs and optional-stage outcomes
- The experience result and HTTP payloads
"""

from datetime import datetime
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, NonNegativeInt, PositiveInt


DEFAULT_PRODUCT_TYPE = "producto"


class Rect(BaseModel):
    """Axis-aligned rectangle in pixel coordinates."""

    x: NonNegativeInt = 0
    y: NonNegativeInt = 0
    width: NonNegativeInt = 0
    height: NonNegativeInt = 0

    def fits(self, canvas_width: int, canvas_height: int) -> bool:
        """True when the rectangle lies fully inside the canvas."""
        return self.x + self.width <= canvas_width and self.y + self.height <= canvas_height


class Conflict(BaseModel):
    """A placement conflict reported by the vision model."""

    type: str = ""
    description: str = ""


class RoomAnalysis(BaseModel):
    """Geometry and style of the shopper's room as proposed by the vision model."""

    imageWidth: PositiveInt
    imageHeight: PositiveInt
    roomStyle: str = ""
    detectedAnchors: list[str] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    placement: Rect
    finalPlacement: Rect
    fallback: bool = Field(default=False, description="True when the model reply was unusable")


class ProductRecord(BaseModel):
    """A product resolved from the catalog. Immutable once fetched."""

    id: str
    title: str = ""
    handle: Optional[str] = None
    productType: str = DEFAULT_PRODUCT_TYPE
    description: str = ""
    featuredImageUrl: Optional[str] = None
    onlineStoreUrl: Optional[str] = None

    model_config = {"frozen": True}


class ProductEmbedding(BaseModel):
    """Best-effort visual descriptors of the product."""

    colors: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    texture: str = ""
    pattern: str = ""


class GenerationJob(BaseModel):
    """Observed state of a job on the generation backend."""

    externalId: str
    status: Literal["pending", "processing", "succeeded", "failed"]
    outputUrl: Optional[str] = None
    error: Optional[str] = None


class StoredAsset(BaseModel):
    """An object persisted in the asset store."""

    url: str
    publicId: str


class Ok(BaseModel):
    """Optional stage that produced a value."""

    value: Any


class Skipped(BaseModel):
    """Optional stage that was dropped, with the reason why."""

    reason: str


StageResult = Union[Ok, Skipped]


class Thumbnails(BaseModel):
    """Preview and medium renditions of one image."""

    low: str
    medium: str


class ExperienceResult(BaseModel):
    """Final aggregate returned to the shopper. Never persisted."""

    sessionId: str
    roomImageUrl: str
    generatedImageUrl: str
    productUrl: Optional[str] = None
    productName: str
    message: str
    analysis: RoomAnalysis
    thumbnails: dict[str, Thumbnails]
    embedding: Optional[ProductEmbedding] = None
    createdAt: datetime
    skipped: dict[str, str] = Field(
        default_factory=dict,
        description="Optional stages that were skipped, with reasons. Logged, never sent to the client",
    )

    def to_response(self) -> dict:
        """Wire format of the primary endpoint."""
        return {
            "ok": True,
            "status": "complete",
            "session_id": self.sessionId,
            "room_image": self.roomImageUrl,
            "ai_image": self.generatedImageUrl,
            "product_url": self.productUrl,
            "product_name": self.productName,
            "message": self.message,
            "analysis": self.analysis.model_dump(),
            "thumbnails": {key: thumbs.model_dump() for key, thumbs in self.thumbnails.items()},
            "embedding": self.embedding.model_dump() if self.embedding else None,
            "created_at": self.createdAt.isoformat(),
        }


class CatalogListItem(BaseModel):
    """One entry of the product listing endpoint."""

    id: str
    title: str
    handle: Optional[str] = None
    image: Optional[str] = None
    url: Optional[str] = None


class ProductListResponse(BaseModel):
    """Response payload for the /products endpoint."""

    success: bool = True
    products: list[CatalogListItem] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error payload returned by every endpoint."""

    status: str = "error"
    kind: str
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool = True
    time: datetime
