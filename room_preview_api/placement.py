"""
Placement Refiner

Deterministic rule engine that decides where the product goes in the room:
1. Start from a centered baseline box
2. Resolve the product type to a canonical category tag (keyword lookup)
3. Apply that category's placement zone
4. Apply free-text hints from the shopper ("arriba", "a la derecha", ...)
5. Clamp the result to the canvas

No I/O and no hidden state: the same inputs always give the same box.
"""

import re
import unicodedata
from typing import Optional

from pydantic import BaseModel

from room_preview_api.models import Rect, RoomAnalysis


GENERIC = "generic"
WALL_ART = "wall_art"
FURNITURE = "furniture"
CEILING_LIGHT = "ceiling_light"
SMALL_DECOR = "small_decor"

BASELINE_WIDTH = 0.28
BASELINE_HEIGHT = 0.22


class ZonePolicy(BaseModel):
    """Fractions of the canvas a category occupies. None keeps the current value."""

    y: Optional[float] = None
    height: Optional[float] = None
    width: Optional[float] = None

    model_config = {"frozen": True}


# Resolution order matters: the first tag with a matching term wins. Furniture
# precedes wall art and decor, whose terms also show up as furniture modifiers
# ("Escritorio con marco de acero").
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    CEILING_LIGHT: (
        "lampara", "lamp", "colgante", "candelabro", "luminaria", "plafon",
        "ceiling", "pendant", "chandelier",
    ),
    FURNITURE: (
        "mesa", "sofa", "sillon", "silla", "gabinete", "mueble", "aparador",
        "comoda", "escritorio", "estante", "estanteria", "repisa", "mesita",
        "table", "couch", "cabinet", "sideboard", "dresser", "chair", "desk", "shelf", "shelves",
    ),
    WALL_ART: (
        "cuadro", "marco", "lienzo", "pintura", "poster", "afiche", "lamina",
        "obra de arte", "arte de pared", "espejo",
        "wall art", "frame", "canvas", "painting", "print", "mirror",
    ),
    SMALL_DECOR: (
        "planta", "maceta", "macetero", "figura", "escultura", "jarron", "florero", "adorno",
        "plant", "figurine", "sculpture", "vase", "ornament",
    ),
}

# Whole words only, optionally pluralized: "lamina" must not match "laminada".
_CATEGORY_PATTERNS = {
    tag: re.compile(r"\b(?:" + "|".join(re.escape(term) for term in terms) + r")(?:s|es)?\b")
    for tag, terms in CATEGORY_KEYWORDS.items()
}

ZONE_POLICIES: dict[str, ZonePolicy] = {
    GENERIC: ZonePolicy(),
    WALL_ART: ZonePolicy(y=0.18, height=0.26),
    FURNITURE: ZonePolicy(y=0.55, height=0.30),
    CEILING_LIGHT: ZonePolicy(y=0.08, height=0.20),
    SMALL_DECOR: ZonePolicy(y=0.60, width=0.25),
}


class HintRule(BaseModel):
    """A free-text hint and the single axis it rewrites."""

    name: str
    terms: tuple[str, ...]
    axis: str  # "x", "y" or "width"
    value: Optional[float] = None  # None on the x axis means re-center

    model_config = {"frozen": True}


# Applied in this order, so a later rule wins on a shared axis.
HINT_RULES: tuple[HintRule, ...] = (
    HintRule(name="top", terms=("top", "upper", "arriba", "superior"), axis="y", value=0.10),
    HintRule(name="bottom", terms=("bottom", "lower", "abajo", "inferior"), axis="y", value=0.65),
    HintRule(name="corner", terms=("corner", "esquina", "esquinas", "rincon"), axis="width", value=0.22),
    HintRule(name="left", terms=("left", "izquierda", "izquierdo"), axis="x", value=0.10),
    HintRule(name="right", terms=("right", "derecha"), axis="x", value=0.60),
    HintRule(name="center", terms=("center", "centre", "centro", "centrado", "middle"), axis="x"),
)


def normalize_text(text: Optional[str]) -> str:
    """Lowercase and strip accents so "Lámpara" and "lampara" compare equal."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower().strip()


def resolve_category(product_type: Optional[str]) -> str:
    """
    Map a free-form product type to a canonical category tag.

    Case- and accent-insensitive whole-word match (plurals included) against
    each tag's term list.

    Examples:
        >>> resolve_category("Lámpara colgante")
        'ceiling_light'
        >>> resolve_category("Gift card")
        'generic'
    """
    normalized = normalize_text(product_type)
    if not normalized:
        return GENERIC
    for tag, pattern in _CATEGORY_PATTERNS.items():
        if pattern.search(normalized):
            return tag
    return GENERIC


def match_hints(idea_text: Optional[str]) -> list[HintRule]:
    """Return the hint rules mentioned in the shopper's idea, in application order."""
    normalized = normalize_text(idea_text)
    if not normalized:
        return []
    matched = []
    for rule in HINT_RULES:
        if any(re.search(rf"\b{re.escape(term)}\b", normalized) for term in rule.terms):
            matched.append(rule)
    return matched


def baseline_rect(canvas_width: int, canvas_height: int) -> Rect:
    """Centered box covering 28% x 22% of the canvas."""
    width = round(canvas_width * BASELINE_WIDTH)
    height = round(canvas_height * BASELINE_HEIGHT)
    return Rect(
        x=(canvas_width - width) // 2,
        y=(canvas_height - height) // 2,
        width=width,
        height=height,
    )


def clamp_rect(x: int, y: int, width: int, height: int, canvas_width: int, canvas_height: int) -> Rect:
    """Force a box inside [0, canvas_width) x [0, canvas_height), shrinking it if needed."""
    x = min(max(0, x), max(0, canvas_width - 1))
    y = min(max(0, y), max(0, canvas_height - 1))
    width = max(0, width)
    height = max(0, height)
    if x + width > canvas_width:
        width = canvas_width - x
    if y + height > canvas_height:
        height = canvas_height - y
    return Rect(x=x, y=y, width=width, height=height)


def refine(analysis: RoomAnalysis, product_type: Optional[str], idea_text: Optional[str]) -> Rect:
    """
    Compute the final placement rectangle for a product in the analyzed room.

    Args:
        analysis: Room analysis; only the canvas size is read
        product_type: Catalog product type (any language, any case)
        idea_text: Shopper's free-text idea, may be empty

    Returns:
        A Rect that lies fully inside the canvas
    """
    canvas_width = analysis.imageWidth
    canvas_height = analysis.imageHeight

    box = baseline_rect(canvas_width, canvas_height)
    x, y, width, height = box.x, box.y, box.width, box.height

    policy = ZONE_POLICIES[resolve_category(product_type)]
    if policy.width is not None:
        width = round(canvas_width * policy.width)
        x = (canvas_width - width) // 2
    if policy.y is not None:
        y = round(canvas_height * policy.y)
    if policy.height is not None:
        height = round(canvas_height * policy.height)

    for rule in match_hints(idea_text):
        if rule.axis == "y":
            y = round(canvas_height * rule.value)
        elif rule.axis == "width":
            width = round(canvas_width * rule.value)
        elif rule.value is None:
            x = (canvas_width - width) // 2
        else:
            x = round(canvas_width * rule.value)

    return clamp_rect(x, y, width, height, canvas_width, canvas_height)


def apply_refinement(analysis: RoomAnalysis, product_type: Optional[str], idea_text: Optional[str]) -> RoomAnalysis:
    """Return the analysis with finalPlacement replaced by the refined box."""
    return analysis.model_copy(update={"finalPlacement": refine(analysis, product_type, idea_text)})
