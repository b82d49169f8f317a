import fcntl
import re
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from asset_warehouse.errors import AssetNotFound, LockTimeout
from asset_warehouse.ledger import IndexLedger, parse_ledger, render_entry
from asset_warehouse.models import (
    KIND_MULTI_VIEW,
    KIND_SINGLE,
    STATUS_COMPLETED,
    AnalysisResult,
    AssetRecord,
    Feature,
)


def _single_record(**overrides):
    record = AssetRecord(
        asset_id=str(uuid.uuid4()),
        kind=KIND_SINGLE,
        status=STATUS_COMPLETED,
        title="Sunset over the bay",
        artist="R. Ocampo",
        uploaded_at=datetime(2024, 5, 1, 18, 30, 0),
        tags=["beach", "sunset"],
        category="landscapes",
        file_path="categories/landscapes/x.jpg",
        thumbnail_path="categories/landscapes/x_thumb.jpg",
        width=640,
        height=480,
        file_size=3 * 1024 * 1024,
        analysis=AnalysisResult(
            kind=KIND_SINGLE,
            primary_category="Landscapes",
            description="Warm light over\nthe water.",
            objects=["sea"],
            colors=["orange"],
            features=[Feature("sunset", 0.9)],
            scene_type="outdoor",
            mood="calm",
        ),
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    return record


def test_initialize_creates_header(ledger):
    content = ledger.read_all()
    assert content.startswith("# Asset Warehouse Index\n")
    assert "Last Updated:" in content


def test_initialize_never_touches_existing_ledger(data_root):
    index = IndexLedger(data_root)
    index.initialize()
    index.index_path.write_text("# Custom Content")

    index.initialize()
    index.initialize()
    assert index.read_all() == "# Custom Content"


def test_render_entry_layout():
    record = _single_record()
    entry = render_entry(record)

    assert entry.startswith(f"\n## Asset: {record.asset_id}\n\n**Title:** Sunset over the bay\n")
    assert "**Uploaded:** 2024-05-01 18:30:00\n" in entry
    assert "**Kind:** single-image\n" in entry
    assert "**Category:** landscapes\n" in entry
    assert "**Dimensions:** 640x480\n" in entry
    assert "**File Size:** 3.0 MB\n" in entry
    assert "**Manual Tags:** beach, sunset\n" in entry
    assert "- **Description:** Warm light over the water.\n" in entry
    assert "- **AI Features:** sunset (0.90)\n" in entry
    assert entry.endswith("\n---\n")

    labels = re.findall(r"^\*\*([^*]+):\*\*", entry, re.MULTILINE)
    assert labels[:9] == [
        "Title", "Artist", "Uploaded", "Kind", "Category",
        "File Path", "Thumbnail", "Dimensions", "File Size",
    ]


def test_round_trip_single(ledger):
    record = _single_record()
    ledger.append(record)

    (entry,) = ledger.parse_all()
    assert entry.asset_id == record.asset_id
    assert entry.title == record.title
    assert entry.artist == record.artist
    assert entry.category == "landscapes"
    assert entry.kind == KIND_SINGLE
    assert entry.tags == ["beach", "sunset"]
    assert entry.file_path == record.file_path
    assert entry.thumbnail_path == record.thumbnail_path
    assert entry.uploaded_at == "2024-05-01 18:30:00"


def test_round_trip_multi_view(ledger):
    asset_id = str(uuid.uuid4())
    folder = f"categories/sculpture/{asset_id}"
    record = AssetRecord(
        asset_id=asset_id,
        kind=KIND_MULTI_VIEW,
        status=STATUS_COMPLETED,
        title="Bronze bust",
        artist="M. Rossi",
        uploaded_at=datetime(2024, 5, 2, 9, 0, 0),
        category="sculpture",
        folder_path=folder,
        views={slot: f"{folder}/{slot}.png" for slot in ("right", "front", "left", "back")},
        total_file_size=2 * 1024 * 1024,
        model_file_path=f"{folder}/model.obj",
        model_filename="bust.obj",
    )
    ledger.append(record)

    text = ledger.read_all()
    assert "**Total File Size:** 2.0 MB (4 views)" in text
    assert text.index("- front:") < text.index("- back:") < text.index("- left:") < text.index("- right:")

    (entry,) = ledger.parse_all()
    assert entry.kind == KIND_MULTI_VIEW
    assert entry.title == "Bronze bust"
    assert entry.tags == []
    assert entry.folder_path == folder
    assert entry.model_file_path == f"{folder}/model.obj"
    assert entry.model_filename == "bust.obj"
    assert entry.views == record.views


def test_empty_title_does_not_swallow_next_line():
    record = _single_record(title="")
    (entry,) = parse_ledger(render_entry(record))
    assert entry.title == ""
    assert entry.artist == "R. Ocampo"


def test_concurrent_appends_are_not_interleaved(ledger):
    records = [_single_record(title=f"Asset {i}") for i in range(40)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(ledger.append, records))

    entries = ledger.parse_all()
    assert len(entries) == len(records)
    assert {e.asset_id for e in entries} == {r.asset_id for r in records}
    assert {e.title for e in entries} == {r.title for r in records}
    for entry in entries:
        assert entry.artist == "R. Ocampo"
        assert entry.tags == ["beach", "sunset"]
    assert ledger.read_all().count("\n---\n") == len(records) + 1


def test_list_entries_filters_by_category(ledger):
    ledger.append(_single_record())
    ledger.append(_single_record(category="animals"))

    assert len(ledger.list_entries()) == 2
    assert [e.category for e in ledger.list_entries(category="animals")] == ["animals"]


def test_get_unknown_asset(ledger):
    ledger.append(_single_record())
    with pytest.raises(AssetNotFound):
        ledger.get("missing")


def test_label_inside_a_value_does_not_shadow_later_fields():
    record = _single_record(title="Notes **Category:** hacked **Artist:** bob", artist="A **Kind:** B")
    (entry,) = parse_ledger(render_entry(record))

    assert entry.title == "Notes **Category:** hacked **Artist:** bob"
    assert entry.artist == "A **Kind:** B"
    assert entry.category == "landscapes"
    assert entry.kind == KIND_SINGLE


def test_inner_whitespace_survives_round_trip(ledger):
    ledger.append(_single_record(title="Two  spaces", artist="Tab\tSeparated"))

    (entry,) = ledger.parse_all()
    assert entry.title == "Two  spaces"
    assert entry.artist == "Tab\tSeparated"


def test_append_times_out_while_lock_is_held(data_root):
    index = IndexLedger(data_root, lock_timeout=0.2)
    index.initialize()

    with index.lock_path.open("a") as holder:
        fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
        started = time.monotonic()
        with pytest.raises(LockTimeout):
            index.append(_single_record())
        elapsed = time.monotonic() - started
        fcntl.flock(holder.fileno(), fcntl.LOCK_UN)

    assert 0.2 <= elapsed < 2.0
    assert index.parse_all() == []

    index.append(_single_record())
    assert len(index.parse_all()) == 1
