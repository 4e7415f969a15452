"""
Tests for the segment cache endpoints.

Every test builds its own application so cached records never leak
between tests.
"""

import base64
import io
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

sys.path.append(str(Path(__file__).resolve().parents[1]))

from snaplist.main import create_app  # type: ignore  # noqa: E402
from snaplist.services.segment_cache import LSHMaskCache  # type: ignore  # noqa: E402

WIDTH, HEIGHT = 32, 24


def _mask(x0: int, y0: int, x1: int, y1: int) -> dict:
    data = [0] * (WIDTH * HEIGHT)
    for y in range(y0, y1):
        for x in range(x0, x1):
            data[y * WIDTH + x] = 1
    return {"data": data, "width": WIDTH, "height": HEIGHT}


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(cache=LSHMaskCache()))


def test_store_and_match(client: TestClient) -> None:
    mask = _mask(4, 4, 20, 18)
    resp = client.post("/api/segments", json={"mask": mask, "result": {"title": "chair"}})
    assert resp.status_code == 201
    record_id = resp.json()["id"]

    match = client.post("/api/segments/match", json={"mask": mask}).json()
    assert match["match"]["id"] == record_id
    assert match["match"]["iou"] == 1.0
    assert match["match"]["result"] == {"title": "chair"}
    assert match["lookupMs"] is not None


def test_match_miss_returns_null(client: TestClient) -> None:
    client.post("/api/segments", json={"mask": _mask(0, 0, 10, 10), "result": {}})
    resp = client.post("/api/segments/match", json={"mask": _mask(20, 12, 32, 24)})
    assert resp.status_code == 200
    assert resp.json()["match"] is None


def test_store_rejects_bad_dimensions(client: TestClient) -> None:
    body = {"mask": {"data": [1, 0, 1], "width": 2, "height": 2}, "result": {}}
    assert client.post("/api/segments", json=body).status_code == 422


def test_stats_and_clear(client: TestClient) -> None:
    client.post("/api/segments", json={"mask": _mask(0, 0, 10, 10), "result": {}})
    assert client.get("/api/segments/stats").json()["records"] == 1
    assert client.delete("/api/segments").status_code == 204
    assert client.get("/api/segments/stats").json()["records"] == 0


def test_apps_do_not_share_caches() -> None:
    first = TestClient(create_app())
    second = TestClient(create_app())
    first.post("/api/segments", json={"mask": _mask(0, 0, 10, 10), "result": {}})
    assert second.get("/api/segments/stats").json()["records"] == 0


def test_hover_pipeline_caches_result() -> None:
    described: list = []

    def describe(sticker: Image.Image) -> str:
        described.append(sticker.size)
        return "desk lamp"

    client = TestClient(create_app(cache=LSHMaskCache(), enrich=describe))
    buf = io.BytesIO()
    Image.new("RGB", (WIDTH, HEIGHT), (0, 128, 0)).save(buf, format="PNG")
    image = base64.b64encode(buf.getvalue()).decode("ascii")
    body = {
        "mask": _mask(4, 4, 20, 18),
        "image": image,
        "scale": {"width": WIDTH, "height": HEIGHT, "scale": 1.0, "uploadScale": 1.0},
    }
    first = client.post("/api/segments/hover", json=body).json()
    assert first["cached"] is False
    assert first["description"] == "desk lamp"
    assert first["paths"] == ["M4 4 L4 18 20 18 20 4"]
    assert first["sticker"].startswith("data:image/png;base64,")
    assert first["center"] == {"x": 12, "y": 11}

    second = client.post("/api/segments/hover", json=body).json()
    assert second["cached"] is True
    assert second["id"] == first["id"]
    assert described == [(16, 14)]


def _hover_body(mask: dict) -> dict:
    buf = io.BytesIO()
    Image.new("RGB", (WIDTH, HEIGHT)).save(buf, format="PNG")
    return {
        "mask": mask,
        "image": base64.b64encode(buf.getvalue()).decode("ascii"),
        "scale": {"width": WIDTH, "height": HEIGHT, "scale": 1.0, "uploadScale": 1.0},
    }


def test_hover_ignores_records_stored_directly(client: TestClient) -> None:
    mask = _mask(4, 4, 20, 18)
    stored = client.post("/api/segments", json={"mask": mask, "result": {"title": "chair"}}).json()
    resp = client.post("/api/segments/hover", json=_hover_body(mask))
    assert resp.status_code == 200
    data = resp.json()
    assert data["cached"] is False
    assert data["id"] != stored["id"]
    assert data["paths"] == ["M4 4 L4 18 20 18 20 4"]


def test_empty_hover_is_not_cached(client: TestClient) -> None:
    empty = {"data": [0] * (WIDTH * HEIGHT), "width": WIDTH, "height": HEIGHT}
    for _ in range(2):
        data = client.post("/api/segments/hover", json=_hover_body(empty)).json()
        assert data["id"] is None
        assert data["paths"] == []
        assert data["sticker"] is None
    assert client.get("/api/segments/stats").json()["records"] == 0
