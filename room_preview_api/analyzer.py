"""
Scene Analyzer

Uses an OpenAI vision model for two structured reads:
1. Room analysis: canvas size, room style and a proposed placement box
2. Product embedding: colors, materials, texture and pattern of the product

Model replies are expected to be a single JSON object, possibly wrapped in
code fences. A room reply that cannot be used is replaced by a deterministic
fallback analysis, so a malformed reply never aborts the pipeline. Only
transport or API errors escape, as UpstreamUnavailable.
"""

import json
import logging
import math
import re
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from room_preview_api.config import Config
from room_preview_api.errors import ParseError, UpstreamUnavailable
from room_preview_api.models import Conflict, ProductEmbedding, Rect, RoomAnalysis
from room_preview_api.placement import clamp_rect

logger = logging.getLogger(__name__)

DEFAULT_CANVAS = (1200, 800)
FALLBACK_WIDTH = 0.60
FALLBACK_HEIGHT = 0.50

ROOM_ANALYSIS_PROMPT = """You are analyzing a real photo of a customer's room so a product can be placed in it.

Inputs:
- image1: the customer's room.
- image2 (if present): the real product{product_clause}.

Return ONLY a valid JSON object, no prose, no markdown:
{{
  "imageWidth": number,
  "imageHeight": number,
  "roomStyle": "short text",
  "detectedAnchors": ["sofa", "wall"],
  "placement": {{"x": 0, "y": 0, "width": 0, "height": 0}},
  "conflicts": [{{"type": "string", "description": "string"}}],
  "finalPlacement": {{"x": 0, "y": 0, "width": 0, "height": 0}}
}}

All geometry values are integer pixels of image1.
Use the customer's idea if there is one: "{idea}".
If there are no conflicts, "conflicts" is [] and "finalPlacement" equals "placement".
"""

PRODUCT_EMBEDDING_PROMPT = """Analyze ONLY the main product in the image ({title}).
Return EXACTLY this JSON object and nothing else:
{
  "colors": ["color1", "color2"],
  "materials": ["material1", "material2"],
  "texture": "short text",
  "pattern": "short text"
}
"""

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_OBJECT_RE = re.compile(r"\{.*\}", re.S)


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    return _FENCE_RE.sub("", (text or "").strip()).strip()


def decode_json_object(text: str) -> dict:
    """
    Decode the first JSON object in a model reply.

    Raises:
        ParseError: If no JSON object can be decoded
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(cleaned)
        if not match:
            raise ParseError(f"no JSON object in model reply: {cleaned[:200]!r}")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ParseError(f"invalid JSON in model reply: {e}")
    if not isinstance(data, dict):
        raise ParseError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _positive_int(value: Any) -> Optional[int]:
    number = _number(value)
    if number is None or number < 1:
        return None
    return int(round(number))


def _scaled_rect(raw: dict, sx: float, sy: float, canvas: tuple[int, int]) -> Rect:
    def scaled(key: str, factor: float) -> int:
        return int(round((_number(raw.get(key)) or 0.0) * factor))

    return clamp_rect(
        scaled("x", sx), scaled("y", sy), scaled("width", sx), scaled("height", sy), canvas[0], canvas[1]
    )


def fallback_analysis(width: int, height: int, room_style: str = "") -> RoomAnalysis:
    """
    Deterministic analysis used when the model reply is unusable.

    A horizontally centered box of 60% x 50% of the canvas, sitting in the
    upper part of the room (a third of the vertical slack above it).
    """
    box_width = round(width * FALLBACK_WIDTH)
    box_height = round(height * FALLBACK_HEIGHT)
    rect = clamp_rect(
        (width - box_width) // 2, (height - box_height) // 3, box_width, box_height, width, height
    )
    return RoomAnalysis(
        imageWidth=width,
        imageHeight=height,
        roomStyle=room_style,
        placement=rect,
        finalPlacement=rect,
        fallback=True,
    )


def parse_room_analysis(text: str, image_size: Optional[tuple[int, int]] = None) -> RoomAnalysis:
    """
    Parse a room-analysis reply into a RoomAnalysis. Never raises.

    Args:
        text: Raw model reply
        image_size: True (width, height) of the room image, if known. The
            model's geometry is rescaled to it so the mask matches the image.

    Returns:
        The parsed analysis, or a fallback analysis if the reply is unusable
    """
    try:
        data = decode_json_object(text)
    except ParseError as e:
        logger.warning(f"Room analysis unparseable, using fallback: {e}")
        return fallback_analysis(*(image_size or DEFAULT_CANVAS))

    model_width = _positive_int(data.get("imageWidth"))
    model_height = _positive_int(data.get("imageHeight"))
    if image_size:
        canvas = image_size
    else:
        canvas = (model_width or DEFAULT_CANVAS[0], model_height or DEFAULT_CANVAS[1])

    room_style = data.get("roomStyle") if isinstance(data.get("roomStyle"), str) else ""

    final_raw = data.get("finalPlacement")
    placement_raw = data.get("placement")
    if not isinstance(final_raw, dict) and isinstance(placement_raw, dict):
        final_raw = placement_raw
    if not isinstance(final_raw, dict) or _number(final_raw.get("x")) is None:
        logger.warning("Room analysis has no numeric finalPlacement.x, using fallback")
        return fallback_analysis(canvas[0], canvas[1], room_style)
    if not isinstance(placement_raw, dict):
        placement_raw = final_raw

    sx = canvas[0] / model_width if (image_size and model_width) else 1.0
    sy = canvas[1] / model_height if (image_size and model_height) else 1.0

    anchors = data.get("detectedAnchors")
    conflicts = data.get("conflicts")

    try:
        return RoomAnalysis(
            imageWidth=canvas[0],
            imageHeight=canvas[1],
            roomStyle=room_style,
            detectedAnchors=[str(a) for a in anchors] if isinstance(anchors, list) else [],
            conflicts=[
                Conflict(type=str(c.get("type", "")), description=str(c.get("description", "")))
                for c in conflicts
                if isinstance(c, dict)
            ] if isinstance(conflicts, list) else [],
            placement=_scaled_rect(placement_raw, sx, sy, canvas),
            finalPlacement=_scaled_rect(final_raw, sx, sy, canvas),
        )
    except (ValueError, OverflowError) as e:
        logger.warning(f"Room analysis geometry unusable, using fallback: {e}")
        return fallback_analysis(canvas[0], canvas[1], room_style)


def parse_product_embedding(text: str) -> ProductEmbedding:
    """
    Parse an embedding reply.

    Raises:
        ParseError: If the reply is not a JSON object of the expected shape
    """
    data = decode_json_object(text)

    def strings(value: Any) -> list[str]:
        return [str(v) for v in value] if isinstance(value, list) else []

    return ProductEmbedding(
        colors=strings(data.get("colors")),
        materials=strings(data.get("materials")),
        texture=str(data.get("texture") or ""),
        pattern=str(data.get("pattern") or ""),
    )


class SceneAnalyzer:
    """Vision-model client for room analysis and product embeddings."""

    def __init__(self, config: Config, client: Optional[AsyncOpenAI] = None):
        self.model = config.VISION_MODEL
        self.client = client or AsyncOpenAI(api_key=config.OPENAI_API_KEY, timeout=config.HTTP_TIMEOUT)

    async def _ask(self, prompt: str, image_urls: list[str]) -> str:
        content = [{"type": "input_text", "text": prompt}]
        content += [{"type": "input_image", "image_url": url} for url in image_urls]
        try:
            response = await self.client.responses.create(
                model=self.model,
                input=[{"role": "user", "content": content}],
            )
        except OpenAIError as e:
            raise UpstreamUnavailable("vision model", str(e))
        return response.output_text or ""

    async def analyze_room(
        self,
        room_image_url: str,
        idea_text: Optional[str] = None,
        product_image_url: Optional[str] = None,
        product_name: Optional[str] = None,
        image_size: Optional[tuple[int, int]] = None,
    ) -> RoomAnalysis:
        """
        Analyze the room photo and propose where the product goes.

        Args:
            room_image_url: Public URL of the room image
            idea_text: Shopper's free-text idea
            product_image_url: Optional product reference image
            product_name: Optional product name for the prompt
            image_size: True (width, height) of the room image

        Returns:
            A valid RoomAnalysis, real or fallback
        """
        logger.info(f"Analyzing room: {room_image_url}")
        prompt = ROOM_ANALYSIS_PROMPT.format(
            product_clause=f" ({product_name})" if product_name else "",
            idea=(idea_text or "").replace('"', "'"),
        )
        image_urls = [room_image_url] + ([product_image_url] if product_image_url else [])
        raw = await self._ask(prompt, image_urls)
        analysis = parse_room_analysis(raw, image_size)
        logger.info(
            f"Room analysis: {analysis.imageWidth}x{analysis.imageHeight}, "
            f"style='{analysis.roomStyle}', fallback={analysis.fallback}"
        )
        return analysis

    async def extract_product_embedding(self, image_url: str, title: str = "") -> ProductEmbedding:
        """
        Describe the product's visual attributes.

        Raises:
            ParseError: If the reply is not usable
            UpstreamUnavailable: If the vision model cannot be reached
        """
        logger.info(f"Extracting product embedding for '{title}'")
        prompt = PRODUCT_EMBEDDING_PROMPT.replace("{title}", title or "product")
        raw = await self._ask(prompt, [image_url])
        return parse_product_embedding(raw)
