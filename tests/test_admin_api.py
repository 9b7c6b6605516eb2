from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient

from storydesk.admin import app

HEADERS = {"X-Admin-Token": "secret"}


def generate_slides(article):
    return [
        {"slide_number": 1, "content": article.title},
        {"slide_number": 2, "content": "What happens next"},
    ]


def _write_config(tmp_path: Path) -> Path:
    config = {
        "paths": {
            "data_dir": str(tmp_path / "data"),
            "state_db": str(tmp_path / "data" / "state.sqlite3"),
        },
        "collaborators": {"story_generator": "test_admin_api:generate_slides"},
    }
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SD_CONFIG_PATH", str(_write_config(tmp_path)))
    monkeypatch.setenv("SD_ADMIN_TOKEN", "secret")
    monkeypatch.delenv("SD_DB_URL", raising=False)
    return TestClient(app)


def _seed_story(client) -> str:
    response = client.post(
        "/sources", json={"id": "src-1", "name": "Coastal Herald"}, headers=HEADERS
    )
    assert response.status_code == 200
    response = client.post(
        "/articles/ingest",
        json={
            "articles": [
                {
                    "source_id": "src-1",
                    "title": "Harbour reopens after storm",
                    "content_quality_score": 88,
                    "regional_relevance_score": 91,
                }
            ]
        },
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert client.post("/intake/classify", headers=HEADERS).json()["accept"] == 1
    processed = client.post("/queue/process", json={}, headers=HEADERS).json()
    assert processed["completed"] == 1
    stories = client.get("/stories").json()
    assert len(stories) == 1
    return stories[0]["id"]


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_mutations_require_token(client):
    response = client.post("/sources", json={"name": "No token"})
    assert response.status_code == 401


def test_story_review_flow(client):
    story_id = _seed_story(client)

    response = client.post(f"/stories/{story_id}/approve", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["changed"] is True
    again = client.post(f"/stories/{story_id}/approve", headers=HEADERS)
    assert again.status_code == 200
    assert again.json()["changed"] is False

    response = client.put(
        f"/stories/{story_id}/slides/2", json={"content": "one two three"}, headers=HEADERS
    )
    assert response.json()["details"]["word_count"] == 3

    assert client.post(f"/stories/{story_id}/publish", headers=HEADERS).status_code == 200
    assert client.get(f"/stories/{story_id}").json()["status"] == "published"


def test_illegal_transition_is_conflict(client):
    story_id = _seed_story(client)
    response = client.post(f"/stories/{story_id}/publish", headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "illegal_transition"


def test_unknown_story_is_not_found(client):
    response = client.post("/stories/story_missing/approve", headers=HEADERS)
    assert response.status_code == 404


def test_export_lifecycle_and_cascade_delete(client):
    story_id = _seed_story(client)

    started = client.post(f"/stories/{story_id}/export", headers=HEADERS)
    assert started.status_code == 200
    export_id = started.json()["details"]["export_id"]
    busy = client.post(f"/stories/{story_id}/export", headers=HEADERS)
    assert busy.status_code == 409
    assert busy.json()["detail"]["code"] == "already_in_progress"

    report = client.post(
        f"/exports/{export_id}/report",
        json={"status": "completed", "file_paths": ["/exports/1.png"]},
        headers=HEADERS,
    )
    assert report.status_code == 200
    bad_report = client.post(f"/exports/{export_id}/report", json={"status": "?"}, headers=HEADERS)
    assert bad_report.status_code == 400

    deleted = client.delete(f"/stories/{story_id}", headers=HEADERS)
    assert deleted.status_code == 200
    counts = client.get("/pipeline/counts").json()
    assert counts["stories"]["draft"] == 0
    assert counts["exports"]["completed"] == 0
    assert counts["articles"]["new"] == 1


def test_bulk_discard_preview_and_apply(client):
    client.post("/sources", json={"id": "src-1", "name": "Coastal Herald"}, headers=HEADERS)
    client.post(
        "/articles/ingest",
        json={
            "articles": [
                {"source_id": "src-1", "title": "Casino night", "content_quality_score": 60},
                {"source_id": "src-1", "title": "Harbour news", "content_quality_score": 60},
            ]
        },
        headers=HEADERS,
    )
    body = {"keywords": ["casino"]}
    preview = client.post("/articles/bulk-discard/preview", json=body, headers=HEADERS)
    applied = client.post("/articles/bulk-discard/apply", json=body, headers=HEADERS)
    assert preview.json()["count"] == 1
    assert applied.json()["count"] == 1
    empty = client.post("/articles/bulk-discard/preview", json={}, headers=HEADERS)
    assert empty.status_code == 400


def test_sources_listing_includes_health(client):
    client.post("/sources", json={"id": "src-1", "name": "Coastal Herald"}, headers=HEADERS)
    run = client.post(
        "/sources/src-1/runs",
        json={"articlesFound": 8, "articlesStored": 6, "errors": []},
        headers=HEADERS,
    )
    assert run.status_code == 200
    rows = client.get("/sources").json()
    assert rows[0]["tier"] == "productive"
    assert rows[0]["label"] == "Productive"

    scrape = client.post("/sources/src-1/scrape", headers=HEADERS)
    assert scrape.status_code == 200
    assert client.post("/sources/src-1/scrape", headers=HEADERS).status_code == 409


def test_runtime_config_get_put(client):
    response = client.put(
        "/admin/config/runtime", json={"config": {"queue": {"batch_size": 2}}}, headers=HEADERS
    )
    assert response.status_code == 200
    payload = client.get("/admin/config/runtime", headers=HEADERS).json()
    assert payload["config"] == {"queue": {"batch_size": 2}}
    assert payload["effective"]["queue"]["batch_size"] == 2

    bad = client.put(
        "/admin/config/runtime", json={"config": {"queue": {"nope": 1}}}, headers=HEADERS
    )
    assert bad.status_code == 400
