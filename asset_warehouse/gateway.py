"""Classification gateway around the external vision provider."""

from __future__ import annotations

import base64
import logging
import re
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

import requests

from .contracts import AnalysisPayload, parse_contract, parse_feature, parse_matches
from .errors import ProviderError, StorageError
from .models import (
    KIND_MULTI_VIEW,
    KIND_SINGLE,
    SURFACE_SLOTS,
    AnalysisResult,
    Feature,
    ScoredMatch,
)

logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
CLASSIFY_TEMPERATURE = 0.4
SEARCH_TEMPERATURE = 0.2
FALLBACK_CATEGORY = "uncategorized"

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

SINGLE_IMAGE_PROMPT = """Analyze this 2D image and provide categorization + detailed analysis.

Return as JSON with this structure:
{
  "type": "2D",
  "primary_category": "artwork|conceptual-art|surrealism|figurines|character-design|sculpture|performance-art|animals|landscapes|portraits|3d-renders|abstract|architecture|products|uncategorized",
  "description": "2-3 sentence detailed description",
  "objects": ["object1", "object2"],
  "colors": ["color1", "color2"],
  "scene_type": "indoor|outdoor|studio",
  "mood": "calm|dark|energetic|mysterious|whimsical|etc",
  "style": "photorealistic|cartoon|3D|painting|sketch|sculpture",
  "features": ["at least 10 descriptive tags, optionally as 'tag (0.95)'"]
}

primary_category must be ONE flat category. Never return sub-categories or paths.
IMPORTANT: Return ONLY valid JSON, no other text."""

MULTI_VIEW_PROMPT = """Analyze this 3D object from {count} different views ({names}).
These {count} images show the same 3D object from multiple angles.

Images provided:
{listing}
Analyze all {count} views together to understand the complete 3D object.

Return as JSON with this structure:
{{
  "type": "3D",
  "primary_category": "sculpture|figurines|character-design|3d-renders|products|characters|environments|architecture|vehicles|artwork|uncategorized",
  "description": "2-3 sentence detailed description of the 3D object",
  "objects": ["primary objects identified"],
  "colors": ["dominant colors across all views"],
  "style": "photorealistic-3d|stylized|low-poly|high-poly|cartoon-3d|pbr|ceramic|sculpted",
  "mood": "futuristic|organic|mechanical|fantasy|realistic|whimsical|surreal|etc",
  "lighting": "studio|natural|dramatic|neutral",
  "three_d_characteristics": "describe topology, modeling style, material type",
  "features": ["at least 10 descriptive tags, optionally as 'tag (0.95)'"],
  "symmetry": "symmetrical|asymmetrical",
  "complexity": "simple|moderate|complex|highly-detailed"
}}

primary_category must be ONE flat category. Never return sub-categories or paths.
IMPORTANT: Return ONLY valid JSON, no other text."""

SEARCH_PROMPT = """Given the following asset index and a user search query, find all relevant assets.

Asset Index:
{corpus}

User Query: "{query}"

Analyze the index and return a JSON array of matching asset IDs ranked by relevance:
[
  {{"asset_id": "uuid", "relevance_score": 0.95, "reason": "why it matches"}},
  ...
]

Consider:
- Semantic similarity (e.g., "dark cat" matches "black cat at night")
- AI features and confidence scores
- Manual tags
- Scene type and mood
- Object detection results

Return an empty array if nothing matches.
IMPORTANT: Return ONLY valid JSON array, no other text."""


def normalize_category(category: str) -> str:
    """Turn a free-form category into a flat directory name.

    >>> normalize_category("Sci-Fi Character!")
    'sci-fi-character'
    """
    value = re.sub(r"\s+", "-", (category or "").strip().lower())
    value = re.sub(r"[^a-z0-9-]", "", value)
    value = re.sub(r"-{2,}", "-", value).strip("-")
    return value or FALLBACK_CATEGORY


def detect_mime_type(path: Path) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower(), "image/jpeg")


class GeminiProvider:
    """Vision provider speaking the Generative Language REST API."""

    def __init__(self, api_key: str, model: str, timeout: float = 120.0, session: Optional[requests.Session] = None):
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(self, prompt: str, images: Sequence[Tuple[bytes, str]], temperature: float) -> str:
        parts: List[dict] = [{"text": prompt}]
        for data, mime_type in images:
            parts.append(
                {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}}
            )
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"temperature": temperature},
        }
        try:
            response = self.session.post(
                GEMINI_ENDPOINT.format(model=self.model),
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise ProviderError(f"Provider request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"Provider returned a non-JSON envelope: {exc}") from exc

        try:
            candidate_parts = payload["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError("Empty response from provider")
        text = "".join(part.get("text", "") for part in candidate_parts)
        if not text.strip():
            raise ProviderError("Empty response from provider")
        return text


class ClassificationGateway:
    """Runs classification and ranking calls and validates their output."""

    def __init__(self, provider):
        self.provider = provider

    def classify(self, kind: str, slot_paths: Mapping[str, Path]) -> AnalysisResult:
        if kind == KIND_SINGLE:
            (path,) = slot_paths.values()
            return self.classify_single(path)
        if kind == KIND_MULTI_VIEW:
            return self.classify_multi_view(slot_paths)
        raise ProviderError(f"Unknown asset kind: {kind}")

    def classify_single(self, path: Path) -> AnalysisResult:
        images = [(_read_image(path), detect_mime_type(path))]
        raw = self.provider.generate(SINGLE_IMAGE_PROMPT, images, CLASSIFY_TEMPERATURE)
        return self._to_result(KIND_SINGLE, raw)

    def classify_multi_view(self, slot_paths: Mapping[str, Path]) -> AnalysisResult:
        """Send every view of the object in a single call, in canonical slot order."""
        names = [slot for slot in SURFACE_SLOTS if slot in slot_paths]
        if not names:
            raise ProviderError("No surface views provided")
        images = [(_read_image(slot_paths[slot]), detect_mime_type(slot_paths[slot])) for slot in names]
        prompt = MULTI_VIEW_PROMPT.format(
            count=len(names),
            names=", ".join(names),
            listing="".join(f"{i}. {slot} view\n" for i, slot in enumerate(names, start=1)),
        )
        logger.debug("Classifying multi-view set with %d views", len(names))
        raw = self.provider.generate(prompt, images, CLASSIFY_TEMPERATURE)
        return self._to_result(KIND_MULTI_VIEW, raw)

    def rank(self, corpus: str, query: str) -> List[ScoredMatch]:
        raw = self.provider.generate(SEARCH_PROMPT.format(corpus=corpus, query=query), [], SEARCH_TEMPERATURE)
        matches = parse_matches(raw)
        logger.debug("Provider returned %d matches for %r", len(matches), query)
        return [
            ScoredMatch(
                asset_id=match.asset_id,
                relevance_score=min(max(match.relevance_score, 0.0), 1.0),
                reason=match.reason,
            )
            for match in matches
        ]

    @staticmethod
    def _to_result(kind: str, raw: str) -> AnalysisResult:
        payload = parse_contract(raw, AnalysisPayload)
        features = [parse_feature(item) for item in payload.features]
        return AnalysisResult(
            kind=kind,
            primary_category=payload.primary_category.strip(),
            description=payload.description,
            objects=list(payload.objects),
            colors=list(payload.colors),
            features=[Feature(name=f.name, confidence=f.confidence) for f in features],
            scene_type=payload.scene_type if kind == KIND_SINGLE else "",
            mood=payload.mood,
            style=payload.style,
            lighting=payload.lighting if kind == KIND_MULTI_VIEW else "",
            symmetry=payload.symmetry if kind == KIND_MULTI_VIEW else "",
            complexity=payload.complexity if kind == KIND_MULTI_VIEW else "",
            material_characteristics=payload.three_d_characteristics if kind == KIND_MULTI_VIEW else "",
            raw_response=payload.model_dump_json(),
        )


def _read_image(path: Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise StorageError(f"Failed to read {path} for analysis: {exc}") from exc


def build_gateway(config) -> ClassificationGateway:
    provider = GeminiProvider(config.api_key, config.model, timeout=config.provider_timeout)
    return ClassificationGateway(provider)

