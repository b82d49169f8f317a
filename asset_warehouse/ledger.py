"""Append-only Markdown ledger of processed assets."""

from __future__ import annotations

import fcntl
import logging
import re
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .errors import AssetNotFound, LockTimeout, StorageError
from .models import KIND_MULTI_VIEW, KIND_SINGLE, SURFACE_SLOTS, AnalysisResult, AssetRecord, LedgerEntry

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.md"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
LOCK_POLL_INTERVAL = 0.05

_HEADING_RE = re.compile(r"^## Asset: (.+)$", re.MULTILINE)
_VIEWS_RE = re.compile(r"^\*\*Views:\*\*\n((?:- .+\n?)+)", re.MULTILINE)
_VIEW_LINE_RE = re.compile(r"^- (\w+): (.+)$")
_LINE_BREAK_RE = re.compile(r"[ \t]*[\r\n]+[ \t]*")

MB = 1024 * 1024


def _flat(value: Optional[str]) -> str:
    """Join a value onto one line so it cannot break the entry layout.

    Only line breaks are replaced; other whitespace is kept as written.
    """
    return _LINE_BREAK_RE.sub(" ", str(value or "")).strip()


def _field(section: str, name: str) -> str:
    # Labels only count at the start of a line, so a value containing
    # ``**Name:**`` cannot shadow a later field.
    match = re.search(rf"^(?:- )?\*\*{re.escape(name)}:\*\*[ \t]*(.*)$", section, re.MULTILINE)
    return match.group(1).strip() if match else ""


def _normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def render_entry(record: AssetRecord) -> str:
    """Serialize a record into one ledger entry."""
    lines = [
        "",
        f"## Asset: {record.asset_id}",
        "",
        f"**Title:** {_flat(record.title)}",
        f"**Artist:** {_flat(record.artist)}",
        f"**Uploaded:** {record.uploaded_at.strftime(TIMESTAMP_FORMAT)}",
        f"**Kind:** {record.kind}",
        f"**Category:** {record.category}",
    ]

    if record.kind == KIND_SINGLE:
        lines.append(f"**File Path:** {record.file_path}")
        lines.append(f"**Thumbnail:** {record.thumbnail_path}")
        lines.append(f"**Dimensions:** {record.width}x{record.height}")
        lines.append(f"**File Size:** {(record.file_size or 0) / MB:.1f} MB")
    elif record.kind == KIND_MULTI_VIEW:
        lines.append(f"**Folder Path:** {record.folder_path}")
        if record.model_file_path:
            lines.append(f"**Model File:** {record.model_file_path}")
            lines.append(f"**Model Filename:** {_flat(record.model_filename)}")
        lines.append("**Views:**")
        for slot in SURFACE_SLOTS:
            if slot in record.views:
                lines.append(f"- {slot}: {record.views[slot]}")
        lines.append(
            f"**Total File Size:** {(record.total_file_size or 0) / MB:.1f} MB ({len(record.views)} views)"
        )

    if record.tags:
        lines.append("")
        lines.append(f"**Manual Tags:** {', '.join(_flat(tag) for tag in record.tags)}")

    if record.analysis is not None:
        lines.append("")
        lines.extend(_render_analysis(record.analysis))

    lines.append("")
    lines.append("---")
    return "\n".join(lines) + "\n"


def _render_analysis(analysis: AnalysisResult) -> List[str]:
    lines = [
        "**AI Analysis:**",
        f"- **Description:** {_flat(analysis.description)}",
        f"- **Primary Category:** {_flat(analysis.primary_category)}",
    ]
    if analysis.objects:
        lines.append(f"- **Objects Detected:** {', '.join(_flat(o) for o in analysis.objects)}")
    if analysis.colors:
        lines.append(f"- **Dominant Colors:** {', '.join(_flat(c) for c in analysis.colors)}")

    optional = (
        ("Scene Type", analysis.scene_type),
        ("Mood", analysis.mood),
        ("Style", analysis.style),
        ("Lighting", analysis.lighting),
        ("Symmetry", analysis.symmetry),
        ("Complexity", analysis.complexity),
        ("Material Characteristics", analysis.material_characteristics),
    )
    for label, value in optional:
        if value:
            lines.append(f"- **{label}:** {_flat(value)}")

    if analysis.features:
        features = ", ".join(f"{_flat(f.name)} ({f.confidence:.2f})" for f in analysis.features)
        lines.append(f"- **AI Features:** {features}")
    return lines


def _parse_views(section: str) -> Dict[str, str]:
    views: Dict[str, str] = {}
    match = _VIEWS_RE.search(section)
    if not match:
        return views
    for line in match.group(1).splitlines():
        line_match = _VIEW_LINE_RE.match(line)
        if line_match:
            views[line_match.group(1)] = _normalize_path(line_match.group(2).strip())
    return views


def _section_to_entry(asset_id: str, section: str) -> LedgerEntry:
    entry = LedgerEntry(
        asset_id=asset_id,
        title=_field(section, "Title"),
        artist=_field(section, "Artist"),
        uploaded_at=_field(section, "Uploaded"),
        kind=_field(section, "Kind"),
        category=_field(section, "Category"),
        file_path=_normalize_path(_field(section, "File Path")),
        thumbnail_path=_normalize_path(_field(section, "Thumbnail")),
        folder_path=_normalize_path(_field(section, "Folder Path")),
        model_file_path=_normalize_path(_field(section, "Model File")),
        model_filename=_field(section, "Model Filename"),
        description=_field(section, "Description"),
    )
    tags = _field(section, "Manual Tags")
    if tags:
        entry.tags = [tag.strip() for tag in tags.split(",") if tag.strip()]
    if entry.kind == KIND_MULTI_VIEW:
        entry.views = _parse_views(section)
    return entry


def parse_ledger(content: str) -> List[LedgerEntry]:
    """Split ledger text on ``## Asset:`` headings and re-derive each entry."""
    matches = list(_HEADING_RE.finditer(content))
    entries: List[LedgerEntry] = []
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(content)
        section = content[match.start():end]
        entries.append(_section_to_entry(match.group(1).strip(), section))
    return entries


class IndexLedger:
    """The ledger file plus an advisory lock file guarding appends."""

    def __init__(self, data_root: Path, lock_timeout: float = 10.0):
        self.data_root = Path(data_root)
        self.index_path = self.data_root / INDEX_FILENAME
        self.lock_path = self.data_root / f"{INDEX_FILENAME}.lock"
        self.lock_timeout = lock_timeout

    def initialize(self) -> None:
        """Create the ledger with a header; an existing ledger is left untouched."""
        self.data_root.mkdir(parents=True, exist_ok=True)
        header = (
            "# Asset Warehouse Index\n"
            f"Last Updated: {datetime.now().strftime(TIMESTAMP_FORMAT)}\n"
            "\n"
            "---\n"
        )
        try:
            with self.index_path.open("x", encoding="utf-8") as f:
                f.write(header)
        except FileExistsError:
            return
        logger.info("Ledger initialized at %s", self.index_path)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        deadline = time.monotonic() + self.lock_timeout
        with self.lock_path.open("a") as lock_file:
            while True:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise LockTimeout(
                            f"Could not lock {self.lock_path} within {self.lock_timeout}s"
                        ) from None
                    time.sleep(LOCK_POLL_INTERVAL)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def append(self, record: AssetRecord) -> None:
        entry = render_entry(record)
        with self._locked():
            try:
                with self.index_path.open("a", encoding="utf-8") as f:
                    f.write(entry)
            except OSError as exc:
                raise StorageError(f"Failed to append to ledger: {exc}") from exc
        logger.info("Appended %s to ledger", record.asset_id)

    def read_all(self) -> str:
        try:
            return self.index_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read ledger: {exc}") from exc

    def parse_all(self) -> List[LedgerEntry]:
        return parse_ledger(self.read_all())

    def list_entries(self, category: Optional[str] = None) -> List[LedgerEntry]:
        entries = self.parse_all()
        if category:
            entries = [entry for entry in entries if entry.category == category]
        return entries

    def get(self, asset_id: str) -> LedgerEntry:
        for entry in self.parse_all():
            if entry.asset_id == asset_id:
                return entry
        raise AssetNotFound(asset_id)
