"""
Prompt and copy builders for the generation step.
"""

from typing import Optional

from room_preview_api.models import ProductEmbedding, RoomAnalysis
from room_preview_api.placement import (
    CEILING_LIGHT,
    FURNITURE,
    GENERIC,
    SMALL_DECOR,
    WALL_ART,
    resolve_category,
)

CATEGORY_INSTRUCTIONS = {
    WALL_ART: "Hang the product flat on the wall inside the marked area, at eye level, aligned with the wall plane.",
    FURNITURE: "Stand the product on the floor inside the marked area, resting naturally with correct contact shadows.",
    CEILING_LIGHT: "Hang the product from the ceiling inside the marked area, with a visible, plausible suspension.",
    SMALL_DECOR: "Set the product on a surface or the floor inside the marked area at a realistic small scale.",
    GENERIC: "Place the product inside the marked area where it would naturally belong in this room.",
}

ABSOLUTE_RULES = (
    "Use the reference image as the product: do not invent a different product or change its design.",
    "Preserve everything outside the mask exactly as it is.",
    "No text, no logos, no watermarks.",
    "Photographic realism: match the room's perspective, scale and original lighting.",
)

NEGATIVE_PROMPT = (
    "blank canvas, glitch, duplicated objects, deformed furniture, "
    "logos, text, watermarks, violent art, nsfw"
)


def visual_hints(embedding: Optional[ProductEmbedding]) -> str:
    """One line describing the product's colors, materials, texture and pattern."""
    if embedding is None:
        return ""
    parts = []
    if embedding.colors:
        parts.append(f"colors: {', '.join(embedding.colors)}")
    if embedding.materials:
        parts.append(f"materials: {', '.join(embedding.materials)}")
    if embedding.texture:
        parts.append(f"texture: {embedding.texture}")
    if embedding.pattern:
        parts.append(f"pattern: {embedding.pattern}")
    return "; ".join(parts)


def build_generation_prompt(
    product_name: str,
    product_type: Optional[str],
    analysis: RoomAnalysis,
    embedding: Optional[ProductEmbedding] = None,
    idea: Optional[str] = None,
) -> str:
    """Inpainting prompt: category instruction, product details, then the absolute rules."""
    lines = [
        f"Insert the REAL product into the marked area. Product: {product_name}.",
        CATEGORY_INSTRUCTIONS[resolve_category(product_type)],
        f"Room style: {analysis.roomStyle or 'not specified'}.",
    ]
    hints = visual_hints(embedding)
    if hints:
        lines.append(f"Product details: {hints}.")
    if idea and idea.strip():
        lines.append(f'Customer idea: "{idea.strip()}".')
    lines.append("Absolute rules:")
    lines.extend(f"- {rule}" for rule in ABSOLUTE_RULES)
    return "\n".join(lines)


def build_message(room_style: Optional[str], product_name: str, idea: Optional[str]) -> str:
    """Short shopper-facing copy that accompanies the result."""
    base = room_style or "tu espacio"
    message = f"Diseñamos esta propuesta pensando en {base}. "
    message += f"Integrando {product_name} como protagonista, logramos un equilibrio entre estilo y calidez. "
    if idea and idea.strip():
        message += f"También tuvimos en cuenta tu idea: “{idea.strip()}”. "
    message += "Así puedes visualizar cómo se vería tu espacio antes de tomar la decisión final."
    return message
