"""Reporting utilities for ledger summaries and folder explanations."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Dict, List, Tuple


def folder_structure_table(data_root: Path) -> List[Tuple[str, str]]:
    """Return a list of (path, description) rows describing the layout."""
    return [
        (f"{data_root}/index.md", "Append-only ledger of processed assets"),
        (f"{data_root}/index.md.lock", "Lock file serializing ledger appends"),
        (f"{data_root}/temp/", "Staging area for uploads awaiting classification"),
        (f"{data_root}/categories/<category>/", "Permanent storage, one flat folder per category"),
        ("<category>/<asset_id>.<ext>", "Single image"),
        ("<category>/<asset_id>_thumb.jpg", "Thumbnail of a single image"),
        ("<category>/<asset_id>/", "Multi-view set folder"),
        ("<category>/<asset_id>/<slot>.<ext>", "One surface view (front, back, left, right, top, bottom)"),
        ("<category>/<asset_id>/<slot>_thumb.jpg", "Thumbnail of one surface view"),
        ("<category>/<asset_id>/model.<ext>", "Optional raw 3D model file"),
    ]


def render_folder_structure_table(data_root: Path) -> str:
    rows = folder_structure_table(data_root)
    path_col_width = max(len(path) for path, _ in rows)
    header = f"{'Path pattern'.ljust(path_col_width)} | Description"
    divider = f"{'-' * path_col_width}-|-------------------------------------------"
    lines = [header, divider]
    for path, desc in rows:
        lines.append(f"{path.ljust(path_col_width)} | {desc}")
    return "\n".join(lines)


def generate_report(ledger) -> Dict[str, object]:
    """Build a summary data structure from the ledger entries."""
    entries = ledger.parse_all()
    kind_counter: Counter[str] = Counter(entry.kind for entry in entries)
    category_counter: Counter[str] = Counter(entry.category for entry in entries)
    tag_counter: Counter[str] = Counter(tag for entry in entries for tag in entry.tags)

    return {
        "total_assets": len(entries),
        "kind_counts": dict(kind_counter),
        "category_counts": dict(category_counter),
        "top_tags": tag_counter.most_common(10),
    }


def format_report(report: Dict[str, object]) -> str:
    lines: List[str] = []
    lines.append("Asset Warehouse Report")
    lines.append("----------------------")
    lines.append(f"Total assets: {report['total_assets']}")
    lines.append("")

    lines.append("Kinds:")
    for kind, count in sorted(report["kind_counts"].items()):
        lines.append(f"  {kind}: {count}")

    lines.append("Categories:")
    for category, count in sorted(report["category_counts"].items()):
        lines.append(f"  {category}: {count}")

    if report["top_tags"]:
        lines.append("Top tags:")
        for tag, count in report["top_tags"]:
            lines.append(f"  {tag}: {count}")

    return "\n".join(lines)
