"""Dataclasses used throughout the ingest pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

KIND_SINGLE = "single-image"
KIND_MULTI_VIEW = "multi-view-set"
KINDS = (KIND_SINGLE, KIND_MULTI_VIEW)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

PRIMARY_SLOT = "primary"
SURFACE_SLOTS = ("front", "back", "left", "right", "top", "bottom")
FOUR_VIEW_SLOTS = SURFACE_SLOTS[:4]
SIX_VIEW_SLOTS = SURFACE_SLOTS


@dataclass
class UploadJob:
    asset_id: str
    kind: str
    staged_paths: Dict[str, Path]
    title: str
    artist: str
    tags: List[str] = field(default_factory=list)
    staged_dir: Optional[Path] = None
    model_path: Optional[Path] = None
    model_filename: Optional[str] = None


@dataclass
class Feature:
    name: str
    confidence: float = 1.0


@dataclass
class AnalysisResult:
    """Structured output of one classification call."""

    kind: str
    primary_category: str
    description: str = ""
    objects: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)
    features: List[Feature] = field(default_factory=list)
    # single-image descriptors
    scene_type: str = ""
    mood: str = ""
    style: str = ""
    # multi-view descriptors
    lighting: str = ""
    symmetry: str = ""
    complexity: str = ""
    material_characteristics: str = ""
    raw_response: str = ""


@dataclass
class AssetRecord:
    asset_id: str
    kind: str
    status: str
    title: str
    artist: str
    uploaded_at: datetime
    tags: List[str] = field(default_factory=list)
    processed_at: Optional[datetime] = None
    category: str = ""
    # single image
    file_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    # multi-view set
    folder_path: Optional[str] = None
    views: Dict[str, str] = field(default_factory=dict)
    total_file_size: Optional[int] = None
    model_file_path: Optional[str] = None
    model_filename: Optional[str] = None
    analysis: Optional[AnalysisResult] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_FAILED)


@dataclass
class ScoredMatch:
    asset_id: str
    relevance_score: float
    reason: str = ""


@dataclass
class SearchResponse:
    query: str
    results: List[ScoredMatch]
    total: int


@dataclass
class LedgerEntry:
    """Summary of one asset, re-derived from the ledger text."""

    asset_id: str
    title: str = ""
    artist: str = ""
    uploaded_at: str = ""
    kind: str = ""
    category: str = ""
    file_path: str = ""
    thumbnail_path: str = ""
    folder_path: str = ""
    model_file_path: str = ""
    model_filename: str = ""
    views: Dict[str, str] = field(default_factory=dict)
    description: str = ""
    tags: List[str] = field(default_factory=list)
