"""Image clarity: how informative a structured description is (0-100)."""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional

CLOTHING_SLOTS = ("top", "trousers", "shoes", "jacket", "dress")


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _known(value: Any) -> bool:
    return isinstance(value, str) and bool(value) and value != "unknown"


def _field_score(obj: Any, weight: float = 5) -> float:
    if not isinstance(obj, Mapping):
        return 0.0
    confidence = _number(obj.get("confidence"))
    if not _known(obj.get("value")) or confidence is None or confidence < 50:
        return 0.0
    return min(weight, (confidence / 100.0) * weight)


def _get(schema: Mapping, *path: str) -> Any:
    node: Any = schema
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def extract_clarity(schema: Any) -> int:
    """Composite score over the attribute fields a describer filled with confidence."""
    if not isinstance(schema, Mapping):
        return 0
    base = _number(schema.get("image_clarity"))
    base = max(0.0, min(100.0, base)) if base is not None else 0.0

    hair = (
        _field_score(_get(schema, "hair", "color"), 10)
        + _field_score(_get(schema, "hair", "length"), 4)
        + _field_score(_get(schema, "hair", "facial_hair"), 4)
    )
    physical = (
        _field_score(schema.get("gender_presentation"), 6)
        + _field_score(schema.get("age_band"), 6)
        + _field_score(schema.get("build"), 4)
        + _field_score(schema.get("skin_tone"), 4)
        + _field_score(schema.get("height_impression"), 2)
    )

    clothing = 0.0
    for slot in CLOTHING_SLOTS:
        part = _get(schema, "clothing", slot)
        if not isinstance(part, Mapping):
            continue
        clothing += _field_score({"value": part.get("color"), "confidence": part.get("confidence")}, 8)
        if isinstance(part.get("description"), str) and part.get("description"):
            clothing += min(5.0, ((_number(part.get("confidence")) or 0.0) / 100.0) * 5)

    accessories = 0.0
    if isinstance(schema.get("accessories"), list):
        for item in schema["accessories"]:
            conf = _number(item.get("confidence")) if isinstance(item, Mapping) else None
            if conf is not None and conf >= 50:
                accessories += 2
        accessories = min(10.0, accessories)

    distinctiveness = _number(schema.get("distinctiveness_score"))
    distinct = min(10.0, distinctiveness / 10.0) if distinctiveness is not None else 0.0

    coverage_fields = (
        _get(schema, "hair", "color", "value"),
        _get(schema, "hair", "length", "value"),
        _get(schema, "gender_presentation", "value"),
        _get(schema, "age_band", "value"),
        _get(schema, "build", "value"),
        _get(schema, "skin_tone", "value"),
        _get(schema, "clothing", "top", "description"),
        _get(schema, "clothing", "trousers", "description"),
        _get(schema, "clothing", "shoes", "description"),
    )
    coverage = min(15, 2 * sum(1 for value in coverage_fields if _known(value)))

    composite = base + hair + physical + clothing + accessories + distinct + coverage
    return int(max(0, min(100, math.floor(composite + 0.5))))
