"""OpenAI-backed describer, grouping classifier and visual comparator.

All three talk to the chat completions endpoint in JSON mode. Timeouts are
enforced by the callers (``run_with_timeout``) and mirrored on the SDK client,
whose retries are disabled.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

from openai import OpenAI

from persongroup.config import ResolverConfig
from persongroup.errors import ExternalServiceError
from persongroup.io_utils import minutes_between
from persongroup.services.images import to_data_url
from persongroup.types import DescriptionResult

LOGGER = logging.getLogger("persongroup.services.openai")

API_KEY_ENV_VARS = ("OPENAI_API_KEY", "OPENAIKEY")
SUMMARY_MAX_SENTENCES = 14

DESCRIBER_SYSTEM_PROMPT = " ".join(
    [
        "You turn a single cropped photo of a person into a machine-readable structured description",
        "plus a short natural-language summary for re-identification.",
        "Output only valid JSON. Every numeric field is an integer.",
        'If a trait is not visible use the string "unknown".',
        "Each trait carries a confidence integer 0-100.",
        'Clothing and accessories carry a permanence of "stable", "possibly_removable" or "removable".',
        "Distinctive marks carry a rarity_score 0-100.",
        "Describe only stable, visually obvious traits of the person: ignore background, lighting, pose,",
        "expression, camera perspective and guesses about identity or personality.",
        "Provide a top-level image_clarity integer 0-100 (0 = unusable, 100 = perfectly sharp).",
    ]
)

DESCRIBER_USER_PROMPT = "\n".join(
    [
        'Describe the person in this photo. Return JSON shaped {"description_schema": {...}, "image_clarity": 0-100}:',
        "{",
        '  "description_schema": {',
        '    "visible_area": "head_torso|full_body|upper_body|head_only|lower_body",',
        '    "gender_presentation": {"value": "male|female|androgynous|unknown", "confidence": 0-100},',
        '    "age_band": {"value": "18-24|25-34|35-44|45-54|55+|unknown", "confidence": 0-100},',
        '    "build": {"value": "slim|average|muscular|stocky|unknown", "confidence": 0-100},',
        '    "height_impression": {"value": "short|average|tall|unknown", "confidence": 0-100},',
        '    "skin_tone": {"value": "very_light|light|medium|tan|brown|dark|unknown", "confidence": 0-100},',
        '    "hair": {"color": {...}, "length": {...}, "style": {...}, "facial_hair": {...}},',
        '    "clothing": {"top": {...}, "jacket": {...}, "trousers": {...}, "shoes": {...}, "dress": {...}},',
        '      each clothing slot: {"description": "...", "color": "...", "permanence": "...", "confidence": 0-100, "rare_flag": true|false}',
        '    "accessories": [{"type": "...", "description": "...", "location": "...", "permanence": "...", "confidence": 0-100, "rare_flag": true|false}],',
        '    "distinctive_marks": [{"type": "...", "description": "...", "location": "...", "rarity_score": 0-100, "confidence": 0-100}],',
        '    "distinctiveness_score": 0-100,',
        '    "lighting_uncertainty": 0-100,',
        '    "visible_confidence": 0-100,',
        '    "natural_summary": "<10-14 short factual sentences>"',
        "  }",
        "}",
        "Colors use only: black, white, grey, navy, dark_blue, blue, light_blue, red, burgundy, green, olive, tan,",
        "beige, brown, blonde, dark_blonde, light_brown, auburn, chestnut, ginger, pink, purple, unknown.",
        "Trousers, shoes and heavy jackets rarely change within an hour: mark them stable.",
        "Set rare_flag for visually unusual items (unique logo, clear tear, unusual print, distinctive jewellery).",
    ]
)

REQUIRED_SCHEMA_KEYS = ("gender_presentation", "age_band", "hair", "clothing")

CLASSIFIER_SYSTEM_PROMPT = " ".join(
    [
        "You compare textual descriptions of people for re-identification and decide how likely a NEW",
        "description refers to the same person as each EXISTING group description.",
        "Use only stable appearance traits: gender presentation, age band, build, height impression, skin tone,",
        "hair, stable clothing (tops, trousers, dresses, jackets, shoes) and distinctive accessories or marks.",
        "Photos are taken within about an hour, so stable clothing should match almost exactly; accept wording",
        'and lighting differences such as "navy" vs "dark blue". Removable accessories may differ.',
        "A matching rare detail is very strong evidence; a missing rare detail is only weak evidence against.",
        "Contradictory core clothing usually means different people. Missing details count as unknown.",
        "Score EVERY group from 0 (clearly different) to 100 (certainly the same person).",
        'Return ONLY JSON {"scores": [{"group_id": <id>, "probability": <integer 0-100>,',
        '"explanation": "<key matching or conflicting traits>"}]} with one entry per group and no other keys.',
    ]
)

COMPARATOR_SYSTEM_PROMPT = (
    "You are a re-identification assistant. Compare two cropped person photos and return ONLY valid JSON "
    "with similarity, confidence, reasoning and fatal_mismatch."
)

COMPARATOR_RULES = """Step 0: fatal-mismatch check. If ANY fatal mismatch is present set similarity to 0 and name it.
Fatal mismatches (only these):
- Different major lower-body garment category (skirt/dress vs full-length trousers vs shorts); jeans and pants are the same category.
- Different outfit class (one-piece vs separate top and bottom).
- Clear gender-presentation conflict.
- Clear age-band conflict (child vs adult, 20s vs 60s; 50s vs 60s is not fatal).
Not fatal: removable accessories, footwear wording ("shoes" vs "sneakers"), colour shifts from lighting,
a trait mentioned in only one description.

Determine the probability (0-100) that both photos show the SAME PERSON.
For photos minutes apart allow removable items to differ, but the core outfit must align.
Hair colour and length, build, age range and skin tone must be compatible.
When photos are minutes apart and all permanent traits match, prefer a match.
Priorities: gender, outfit colours and layering, hair, accessories and carried items, build, age.

Return ONLY JSON:
{"similarity": <integer 0-100>, "confidence": "high" | "medium" | "low",
 "reasoning": "<one line per factor, prefixed '+' for support or '-' for conflict>",
 "fatal_mismatch": "gender" | "outfit" | "age" | "hair" | "accessories" | null}"""


def resolve_api_key(api_key: Optional[str] = None) -> str:
    if api_key:
        return api_key
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    raise ExternalServiceError(f"OpenAI API key not configured (set one of {', '.join(API_KEY_ENV_VARS)})")


def build_client(api_key: Optional[str] = None, timeout_s: Optional[float] = None) -> OpenAI:
    """SDK client with retries off; ``timeout_s`` also bounds requests left running by a timed-out caller."""
    kwargs: Dict[str, Any] = {"api_key": resolve_api_key(api_key), "max_retries": 0}
    if timeout_s is not None and timeout_s > 0:
        kwargs["timeout"] = float(timeout_s)
    return OpenAI(**kwargs)


def parse_json_content(response: Any) -> Any:
    """Extract and decode the JSON body of a chat completion."""
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError) as exc:
        raise ExternalServiceError("OpenAI response had no message content") from exc
    if not isinstance(content, str) or not content.strip():
        raise ExternalServiceError("OpenAI response was empty")
    try:
        return json.loads(content)
    except ValueError as exc:
        raise ExternalServiceError(f"OpenAI response was not valid JSON: {content[:200]!r}") from exc


def cap_sentences(text: str, limit: int = SUMMARY_MAX_SENTENCES) -> str:
    sentences: List[str] = []
    current = []
    for token in text.split():
        current.append(token)
        if token.endswith((".", "!", "?")):
            sentences.append(" ".join(current))
            current = []
    if current:
        sentences.append(" ".join(current))
    return " ".join(sentences[:limit])


def _trait(schema: Mapping[str, Any], *path: str) -> str:
    node: Any = schema
    for key in path:
        if not isinstance(node, Mapping):
            return "unknown"
        node = node.get(key)
    if isinstance(node, Mapping):
        node = node.get("value", node.get("description"))
    return node if isinstance(node, str) and node else "unknown"


def summarise_schema(schema: Optional[Mapping[str, Any]]) -> str:
    """One-paragraph digest of a description schema for the comparison prompt."""
    if not isinstance(schema, Mapping):
        return "No structured description available."
    clothing = schema.get("clothing") if isinstance(schema.get("clothing"), Mapping) else {}
    outfit = []
    for slot in ("top", "jacket", "trousers", "dress", "shoes"):
        part = clothing.get(slot)
        if isinstance(part, Mapping) and _trait(part, "description") != "unknown":
            outfit.append(f"{slot}: {part.get('description')} ({part.get('color') or 'unknown'})")
    marks = [
        mark.get("description")
        for mark in schema.get("distinctive_marks") or []
        if isinstance(mark, Mapping) and isinstance(mark.get("description"), str)
    ]
    return (
        f"Gender: {_trait(schema, 'gender_presentation')}. Age: {_trait(schema, 'age_band')}. "
        f"Build: {_trait(schema, 'build')}. Skin tone: {_trait(schema, 'skin_tone')}. "
        f"Hair: {_trait(schema, 'hair', 'length')} {_trait(schema, 'hair', 'color')}. "
        f"Outfit: {'; '.join(outfit) or 'unknown'}. "
        f"Distinctive marks: {'; '.join(marks) or 'none'}."
    )


class OpenAIDescriber:
    """Structured appearance profile plus a short summary for one image."""

    def __init__(self, client: Optional[OpenAI] = None, model: str = "gpt-4o-mini", max_image_side: int = 768):
        self.client = client or build_client()
        self.model = model
        self.max_image_side = max_image_side

    def describe(self, image_ref: str) -> Optional[DescriptionResult]:
        response = self.client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=0.1,
            max_tokens=900,
            messages=[
                {"role": "system", "content": DESCRIBER_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": DESCRIBER_USER_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": to_data_url(image_ref, self.max_image_side), "detail": "low"},
                        },
                    ],
                },
            ],
        )
        payload = parse_json_content(response)
        schema = payload.get("description_schema") if isinstance(payload, dict) else None
        if not isinstance(schema, dict):
            LOGGER.warning("Description schema missing or invalid for %s", image_ref)
            return None
        missing = [key for key in REQUIRED_SCHEMA_KEYS if key not in schema]
        if missing:
            LOGGER.warning("Description schema for %s missing keys %s", image_ref, missing)
            return None
        summary = schema.pop("natural_summary", None)
        if not isinstance(summary, str) or not summary.strip():
            LOGGER.warning("Description for %s has no natural summary", image_ref)
            return None
        clarity = payload.get("image_clarity")
        if isinstance(clarity, (int, float)) and not isinstance(clarity, bool):
            schema["image_clarity"] = int(max(0, min(100, round(clarity))))
        return DescriptionResult(schema=schema, natural_summary=cap_sentences(summary.strip()))


class OpenAIGroupingClassifier:
    """Scores a new description against candidate group descriptions in one request."""

    def __init__(self, client: Optional[OpenAI] = None, model: str = "gpt-4o-mini"):
        self.client = client or build_client()
        self.model = model

    def score_groups(self, new_description: Any, candidates: Sequence[Dict[str, Any]]) -> Any:
        request = {"new_description": new_description, "groups": list(candidates)}
        LOGGER.debug("Grouping request for %d candidate(s)", len(candidates))
        response = self.client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=0.1,
            messages=[
                {"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps(request, default=str)},
            ],
        )
        payload = parse_json_content(response)
        LOGGER.debug("Grouping response: %s", payload)
        return payload


class OpenAIVisualComparator:
    """Pairwise image comparison of a new capture against a group representative."""

    def __init__(self, client: Optional[OpenAI] = None, model: str = "gpt-4o-mini", max_image_side: int = 768):
        self.client = client or build_client()
        self.model = model
        self.max_image_side = max_image_side

    def build_prompt(self, context_a: Optional[Mapping[str, Any]], context_b: Optional[Mapping[str, Any]]) -> str:
        context_a = context_a or {}
        context_b = context_b or {}
        minutes = minutes_between(context_a.get("captured_at"), context_b.get("captured_at"))
        timing = f"Photos taken {round(minutes)} minutes apart." if minutes is not None else "Time difference unknown."
        return "\n".join(
            [
                "Compare these two photos to determine if they show the SAME PERSON.",
                "",
                "CONTEXT:",
                timing,
                f"Photo 1: {summarise_schema(context_a.get('description_schema'))}",
                f"Photo 2: {summarise_schema(context_b.get('description_schema'))}",
                "",
                COMPARATOR_RULES,
            ]
        )

    def compare(
        self,
        image_a: str,
        image_b: str,
        context_a: Optional[Mapping[str, Any]] = None,
        context_b: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = self.client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=0.1,
            max_tokens=350,
            messages=[
                {"role": "system", "content": COMPARATOR_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self.build_prompt(context_a, context_b)},
                        {"type": "image_url", "image_url": {"url": to_data_url(image_a, self.max_image_side), "detail": "low"}},
                        {"type": "image_url", "image_url": {"url": to_data_url(image_b, self.max_image_side), "detail": "low"}},
                    ],
                },
            ],
        )
        payload = parse_json_content(response)
        if not isinstance(payload, dict):
            raise ExternalServiceError("Comparator response was not a JSON object")
        return payload


def build_services(config: ResolverConfig, api_key: Optional[str] = None):
    """Return ``(describer, classifier, comparator)`` sharing one client."""
    timeout_s = max(config.classifier_timeout_s, config.comparator_timeout_s, config.describer_timeout_s)
    client = build_client(api_key, timeout_s=timeout_s)
    describer = OpenAIDescriber(client, model=config.model, max_image_side=config.max_image_side)
    classifier = OpenAIGroupingClassifier(client, model=config.model)
    comparator = (
        OpenAIVisualComparator(client, model=config.model, max_image_side=config.max_image_side)
        if config.vision_enabled
        else None
    )
    return describer, classifier, comparator
