"""JSON contracts for vision provider responses."""

from __future__ import annotations

import json
import re
from typing import List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ProviderError

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_FEATURE_RE = re.compile(r"^(?P<name>.*?)\s*\((?P<confidence>[-+0-9.eE]+)\)\s*$")


class FeatureItem(BaseModel):
    name: str
    confidence: float = 1.0


class AnalysisPayload(BaseModel):
    type: str = ""
    primary_category: str
    description: str = ""
    objects: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    features: List[Union[FeatureItem, str]] = Field(default_factory=list)
    scene_type: str = ""
    mood: str = ""
    style: str = ""
    lighting: str = ""
    symmetry: str = ""
    complexity: str = ""
    three_d_characteristics: str = ""

    @field_validator("primary_category")
    @classmethod
    def _category_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("primary_category must not be empty")
        return value

    @field_validator("objects", "colors", mode="before")
    @classmethod
    def _null_list(cls, value):
        return [] if value is None else value


class MatchPayload(BaseModel):
    asset_id: str
    relevance_score: float = 0.0
    reason: str = ""

    @classmethod
    def from_raw(cls, raw: dict) -> "MatchPayload":
        if "asset_id" not in raw and "image_id" in raw:
            raw = dict(raw, asset_id=raw["image_id"])
        return cls.model_validate(raw)


def clean_json_text(text: str) -> str:
    """Strip Markdown code fences the provider sometimes wraps around JSON."""
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_feature(value: Union[FeatureItem, str]) -> FeatureItem:
    """Accept ``"tag (0.95)"`` strings as well as ``{"name", "confidence"}`` objects."""
    if isinstance(value, FeatureItem):
        return value
    match = _FEATURE_RE.match(value)
    if match:
        try:
            return FeatureItem(name=match.group("name").strip(), confidence=float(match.group("confidence")))
        except ValueError:
            pass
    return FeatureItem(name=value.strip())


def load_json(raw_text: str):
    cleaned = clean_json_text(raw_text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ProviderError(f"Provider returned malformed JSON: {exc}") from exc


def parse_contract(raw_text: str, schema: Type[T]) -> T:
    payload = load_json(raw_text)
    if not isinstance(payload, dict):
        raise ProviderError(f"Expected a JSON object, got {type(payload).__name__}")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise ProviderError(f"Provider response failed validation: {exc}") from exc


def parse_matches(raw_text: str) -> List[MatchPayload]:
    payload: Optional[object] = load_json(raw_text)
    if not isinstance(payload, list):
        raise ProviderError(f"Expected a JSON array, got {type(payload).__name__}")
    matches = []
    for item in payload:
        if not isinstance(item, dict):
            raise ProviderError("Search result items must be JSON objects")
        try:
            matches.append(MatchPayload.from_raw(item))
        except ValidationError as exc:
            raise ProviderError(f"Search result failed validation: {exc}") from exc
    return matches
