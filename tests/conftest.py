import json
from pathlib import Path

import pytest
from PIL import Image

from asset_warehouse.gateway import ClassificationGateway
from asset_warehouse.ledger import IndexLedger
from asset_warehouse.storage import ContentStore
from asset_warehouse.worker import Scheduler


class FakeProvider:
    """Stands in for the vision provider; replies with a canned text."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def generate(self, prompt, images, temperature):
        self.calls.append({"prompt": prompt, "images": list(images), "temperature": temperature})
        return self.reply


def analysis_reply(category="Landscapes", fenced=False, **extra):
    payload = {
        "type": "2D",
        "primary_category": category,
        "description": "A beach at sunset.",
        "objects": ["sea", "sun"],
        "colors": ["orange", "blue"],
        "scene_type": "outdoor",
        "mood": "calm",
        "style": "photorealistic",
        "features": ["beach (0.95)", "sunset (0.90)", "waves"],
    }
    payload.update(extra)
    text = json.dumps(payload)
    return f"```json\n{text}\n```" if fenced else text


def write_image(path: Path, size=(640, 480), color="orange") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


@pytest.fixture
def data_root(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def store(data_root):
    content_store = ContentStore(data_root)
    content_store.initialize()
    return content_store


@pytest.fixture
def ledger(data_root):
    index = IndexLedger(data_root, lock_timeout=5.0)
    index.initialize()
    return index


@pytest.fixture
def make_scheduler(store, ledger):
    started = []

    def factory(reply, worker_count=2, queue_size=10, start=True):
        provider = FakeProvider(reply)
        scheduler = Scheduler(
            store,
            ClassificationGateway(provider),
            ledger,
            worker_count=worker_count,
            queue_size=queue_size,
        )
        if start:
            scheduler.start()
        started.append(scheduler)
        return scheduler, provider

    yield factory
    for scheduler in started:
        scheduler.shutdown()
