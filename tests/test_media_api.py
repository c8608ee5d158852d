import pytest
from fastapi.testclient import TestClient

from media_engine.app.api import create_app
from media_engine.domain.models import EngineSettings
from media_engine.services.cleanup_service import SchedulerState


@pytest.fixture()
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def _upload(client, payload, **form):
    return client.post(
        "/api/v1/media/uploads",
        files={"file": ("photo.png", payload, "image/png")},
        data=form,
    )


def test_upload_stages_image_by_default(client, settings, small_png):
    response = _upload(client, small_png)

    assert response.status_code == 201
    body = response.json()
    assert body["path"].startswith("_tmp/")
    assert body["url"] == "/uploads/" + body["path"]
    assert body["quality"] == 85
    assert (settings.storage_root / body["path"]).exists()
    assert "X-Correlation-ID" in response.headers


def test_upload_into_folder(client, settings, small_png):
    response = _upload(client, small_png, folder="products/p1/images", filename="cover.webp")

    assert response.status_code == 201
    assert response.json()["path"] == "products/p1/images/cover.webp"
    assert (settings.storage_root / "products/p1/images/cover.webp").exists()


def test_upload_rejects_bad_signature(client):
    response = _upload(client, b"not-an-image")

    assert response.status_code == 415
    body = response.json()
    assert body["code"] == "unsupported_media_type"
    assert body["title"] == "Invalid upload"
    assert response.headers["X-Correlation-ID"] == body["correlation_id"]


def test_upload_rejects_traversal_folder(client, small_png):
    response = _upload(client, small_png, folder="../../etc", filename="passwd")

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_path"


def test_upload_over_raw_limit(storage_root, small_png):
    settings = EngineSettings(storage_root=storage_root, max_upload_bytes=16, cleanup_enabled=False)
    with TestClient(create_app(settings)) as client:
        response = _upload(client, small_png)

    assert response.status_code == 413
    assert response.json()["code"] == "payload_too_large"


def test_upload_that_cannot_meet_budget(storage_root, small_png):
    settings = EngineSettings(storage_root=storage_root, max_image_bytes=1, cleanup_enabled=False)
    with TestClient(create_app(settings)) as client:
        response = _upload(client, small_png)

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "image_too_large"
    assert body["max_bytes"] == 1
    assert not any(p.is_file() for p in storage_root.rglob("*"))


def test_relocate_and_delete(client, settings, small_png):
    staged = _upload(client, small_png).json()

    response = client.post(
        "/api/v1/media/relocate",
        json={"source": staged["url"], "directory": "products/p1/images", "filename": "x.webp"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "path": "products/p1/images/x.webp",
        "url": "/uploads/products/p1/images/x.webp",
    }
    assert not (settings.storage_root / staged["path"]).exists()

    response = client.delete("/api/v1/media", params={"path": "/uploads/products/p1/images/x.webp"})
    assert response.status_code == 204
    assert not (settings.storage_root / "products/p1/images/x.webp").exists()

    # Already gone: still fine.
    assert client.delete("/api/v1/media", params={"path": "products/p1/images/x.webp"}).status_code == 204


def test_relocate_missing_source(client):
    response = client.post(
        "/api/v1/media/relocate",
        json={"source": "_tmp/ghost.webp", "directory": "products/p1", "filename": "ghost.webp"},
    )
    assert response.status_code == 404
    assert response.json()["code"] == "asset_not_found"


def test_relocate_validation_error(client):
    response = client.post("/api/v1/media/relocate", json={"source": "_tmp/x.webp"})

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_delete_with_directory_pruning(client, settings, small_png):
    _upload(client, small_png, folder="products/p2/images", filename="a.webp")

    response = client.delete(
        "/api/v1/media", params={"path": "products/p2/images/a.webp", "prune_directory": "true"}
    )

    assert response.status_code == 204
    assert not (settings.storage_root / "products/p2/images").exists()


def test_delete_rejects_traversal(client):
    response = client.delete("/api/v1/media", params={"path": "../../etc/passwd"})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_path"


def test_manual_cleanup_and_status(client):
    response = client.post("/api/v1/media/cleanup", params={"max_age_hours": 24})
    assert response.status_code == 200
    assert response.json()["deleted_files"] == 0

    status = client.get("/api/v1/media/cleanup/status").json()
    assert status["runs"] == 1
    assert status["state"] == SchedulerState.IDLE.value


def test_scheduler_follows_app_lifespan(storage_root):
    settings = EngineSettings(storage_root=storage_root, cleanup_enabled=True)
    app = create_app(settings)

    with TestClient(app) as client:
        status = client.get("/api/v1/media/cleanup/status").json()
        assert status["state"] == SchedulerState.SCHEDULED.value
        assert status["next_run"] is not None

    assert app.state.scheduler.state is SchedulerState.STOPPED


def test_unknown_route_is_problem_details(client):
    response = client.get("/definitely-missing")

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "not_found"
    assert body["title"] == "Resource not found"


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
