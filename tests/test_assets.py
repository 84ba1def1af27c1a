import json

import pytest

from contentflow.core.errors import JobValidationError
from contentflow.services.asset_pipeline import AssetPipeline
from contentflow.services.enhancement import EnhancedContent

from conftest import FakeImages, MemoryStorage


def _content(prompts):
    return EnhancedContent("Title", "Desc", ["One.", "Two."], prompts, ["k"], "fake")


def test_image_limit_caps_units():
    pipeline = AssetPipeline(MemoryStorage(), FakeImages(), image_limit=2)
    assert pipeline.plan_units(_content(["a", "b", "c", "d"])) == 3
    unlimited = AssetPipeline(MemoryStorage(), FakeImages(), image_limit=0)
    assert unlimited.plan_units(_content(["a", "b", "c", "d"])) == 5


def test_generate_uses_deterministic_keys():
    storage = MemoryStorage()
    pipeline = AssetPipeline(storage, FakeImages(), image_limit=4)
    first = pipeline.generate(7, _content(["a", "b"]))
    second = pipeline.generate(7, _content(["a", "b"]))

    assert first == second
    assert first["thumbnail"] == "mem://jobs/7/thumbnail.png"
    assert sorted(storage.objects) == ["jobs/7/images/01.png", "jobs/7/images/02.png", "jobs/7/thumbnail.png"]


def test_assemble_writes_manifest():
    storage = MemoryStorage()
    pipeline = AssetPipeline(storage, FakeImages())
    payload = {"metadata": {"source_url": "u"}, "enhanced": _content(["a"]).to_dict()}
    url = pipeline.assemble(3, payload, {"thumbnail": "t", "images": ["i"]})

    assert url == "mem://jobs/3/final/manifest.json"
    manifest = json.loads(storage.objects["jobs/3/final/manifest.json"])
    assert manifest["voice_script"] == "One.\n\nTwo."
    assert manifest["images"] == ["i"]
    assert manifest["source_url"] == "u"


def test_assemble_needs_script_and_thumbnail():
    pipeline = AssetPipeline(MemoryStorage(), FakeImages())
    with pytest.raises(JobValidationError):
        pipeline.assemble(3, {"enhanced": {}}, {"thumbnail": "t"})
    with pytest.raises(JobValidationError):
        pipeline.assemble(3, {"enhanced": _content([]).to_dict()}, {})
