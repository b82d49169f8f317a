import json
import uuid

import pytest

from asset_warehouse.contracts import clean_json_text
from asset_warehouse.errors import ProviderError
from asset_warehouse.gateway import (
    CLASSIFY_TEMPERATURE,
    SEARCH_TEMPERATURE,
    ClassificationGateway,
    normalize_category,
)
from asset_warehouse.models import KIND_MULTI_VIEW, KIND_SINGLE
from asset_warehouse.search import SearchService

from conftest import FakeProvider, analysis_reply, write_image


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Sci-Fi Character!", "sci-fi-character"),
        ("Landscapes", "landscapes"),
        ("  3D   Renders ", "3d-renders"),
        ("animals/cats", "animalscats"),
        ("!!!", "uncategorized"),
        ("", "uncategorized"),
    ],
)
def test_normalize_category(raw, expected):
    assert normalize_category(raw) == expected
    assert normalize_category(raw) == normalize_category(raw)


def test_clean_json_text_strips_fences():
    assert clean_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_json_text('```\n[]\n```') == "[]"
    assert clean_json_text('  {"a": 1}  ') == '{"a": 1}'


def test_classify_single_parses_fenced_reply(tmp_path):
    image = write_image(tmp_path / "beach.jpg")
    provider = FakeProvider(analysis_reply(fenced=True))

    result = ClassificationGateway(provider).classify_single(image)

    assert result.kind == KIND_SINGLE
    assert result.primary_category == "Landscapes"
    assert result.scene_type == "outdoor"
    assert [(f.name, f.confidence) for f in result.features] == [
        ("beach", 0.95),
        ("sunset", 0.90),
        ("waves", 1.0),
    ]
    (call,) = provider.calls
    assert len(call["images"]) == 1
    assert call["images"][0][1] == "image/jpeg"
    assert call["temperature"] == CLASSIFY_TEMPERATURE


def test_classify_accepts_feature_objects(tmp_path):
    image = write_image(tmp_path / "a.png")
    reply = analysis_reply(features=[{"name": "glow", "confidence": 0.5}])
    result = ClassificationGateway(FakeProvider(reply)).classify_single(image)
    assert result.features[0].name == "glow"
    assert result.features[0].confidence == 0.5


def test_classify_multi_view_sends_all_views_in_one_call(tmp_path):
    paths = {slot: write_image(tmp_path / f"{slot}.png") for slot in ("left", "front", "right", "back")}
    reply = analysis_reply(
        category="Sculpture",
        lighting="studio",
        symmetry="symmetrical",
        complexity="moderate",
        three_d_characteristics="smooth ceramic surface",
    )
    provider = FakeProvider(reply)

    result = ClassificationGateway(provider).classify_multi_view(paths)

    assert len(provider.calls) == 1
    assert len(provider.calls[0]["images"]) == 4
    assert "4 different views (front, back, left, right)" in provider.calls[0]["prompt"]
    assert result.kind == KIND_MULTI_VIEW
    assert result.lighting == "studio"
    assert result.material_characteristics == "smooth ceramic surface"
    assert result.scene_type == ""


@pytest.mark.parametrize(
    "reply",
    [
        "I think this is a landscape.",
        '{"description": "no category"}',
        '{"primary_category": "   "}',
        "[1, 2, 3]",
    ],
)
def test_classify_rejects_malformed_replies(tmp_path, reply):
    image = write_image(tmp_path / "a.png")
    with pytest.raises(ProviderError):
        ClassificationGateway(FakeProvider(reply)).classify_single(image)


def test_rank_parses_and_clamps_scores():
    reply = json.dumps(
        [
            {"asset_id": "a", "relevance_score": 1.4, "reason": "exact"},
            {"image_id": "b", "relevance_score": -0.2, "reason": "weak"},
        ]
    )
    provider = FakeProvider(f"```json\n{reply}\n```")

    matches = ClassificationGateway(provider).rank("# ledger", "red car")

    assert [(m.asset_id, m.relevance_score) for m in matches] == [("a", 1.0), ("b", 0.0)]
    assert provider.calls[0]["images"] == []
    assert provider.calls[0]["temperature"] == SEARCH_TEMPERATURE
    assert 'User Query: "red car"' in provider.calls[0]["prompt"]


def test_rank_rejects_non_array():
    with pytest.raises(ProviderError):
        ClassificationGateway(FakeProvider('{"asset_id": "a"}')).rank("", "x")


def test_search_truncates_locally(ledger):
    reply = json.dumps(
        [{"asset_id": str(uuid.uuid4()), "relevance_score": 0.9 - i / 10, "reason": ""} for i in range(5)]
    )
    provider = FakeProvider(reply)
    service = SearchService(ledger, ClassificationGateway(provider))

    response = service.search("sunset", limit=2)

    assert response.total == 2
    assert len(response.results) == 2
    assert response.results[0].relevance_score == pytest.approx(0.9)
    assert "# Asset Warehouse Index" in provider.calls[0]["prompt"]


def test_search_with_no_matches(ledger):
    service = SearchService(ledger, ClassificationGateway(FakeProvider("[]")))
    response = service.search("anything")
    assert response.results == []
    assert response.total == 0


def test_classify_dispatches_on_kind(tmp_path):
    image = write_image(tmp_path / "a.png")
    gateway = ClassificationGateway(FakeProvider(analysis_reply()))

    assert gateway.classify(KIND_SINGLE, {"primary": image}).kind == KIND_SINGLE
    with pytest.raises(ProviderError):
        gateway.classify("hologram", {"primary": image})
