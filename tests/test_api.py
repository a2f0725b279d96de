"""Tests for the HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from conftest import descriptor_on_port
from genhelper.worker import Helper, HelperState, set_helper
from genhelper.worker.catalog import WORKERS
from genhelper.worker.errors import DeployInProgress


@pytest.fixture
def helper(helper_dir, fake_worker, fast_timings):
    """Helper whose workers all point at the fake worker."""
    state = HelperState.create(
        helper_dir,
        workers=[descriptor_on_port(w.name, fake_worker.port) for w in WORKERS],
    )
    h = Helper(state, timings=fast_timings, api_port=9527)
    set_helper(h)
    yield h
    set_helper(None)


@pytest.fixture
def client(helper):
    from main import app

    with TestClient(app) as c:
        yield c


class TestStatus:
    def test_lists_every_worker_in_order(self, client, fake_worker):
        response = client.get("/api/status")

        assert response.status_code == 200
        data = response.json()
        assert [m["name"] for m in data["models"]] == [w.name for w in WORKERS]
        assert all(m["status"] == "idle" and m["pid"] == 0 for m in data["models"])
        assert data["models"][0]["port"] == fake_worker.port
        assert data["port"] == 9527
        assert data["running"] is True
        assert data["gpu_usage"] == 0

    def test_ready_worker(self, client, helper_dir):
        (helper_dir / "unirig" / "venv").mkdir(parents=True)

        models = {m["name"]: m["status"] for m in client.get("/api/status").json()["models"]}

        assert models["unirig"] == "ready"


class TestLogs:
    def test_startup_line_is_visible_in_filtered_view(self, client):
        response = client.get("/api/logs", params={"model": "comfyui"})

        assert response.status_code == 200
        logs = response.json()["logs"]
        assert logs[0]["model"] == "system"
        assert logs[0]["message"].startswith("Server started on port")


class TestLifecycleErrors:
    def test_stop_not_running(self, client):
        response = client.post("/api/stop", params={"name": "comfyui"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NOT_RUNNING"

    def test_stop_unknown(self, client):
        response = client.post("/api/stop", params={"name": "nope"})

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "UNKNOWN_WORKER"

    def test_start_not_installed(self, client):
        response = client.post("/api/start", params={"name": "comfyui"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NOT_INSTALLED"

    def test_stop_all(self, client):
        response = client.post("/api/stop-all")

        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_deploy_in_progress(self, client, helper, monkeypatch):
        def busy():
            raise DeployInProgress()

        monkeypatch.setattr(helper.deployer, "run_deploy", busy)

        response = client.post("/api/deploy")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "DEPLOY_IN_PROGRESS"


class TestCheckpoints:
    def test_lists_checkpoint_files(self, client, helper_dir):
        checkpoints = helper_dir / "comfyui" / "models" / "checkpoints"
        checkpoints.mkdir(parents=True)
        for name in ("b.safetensors", "a.CKPT", "notes.txt"):
            (checkpoints / name).write_text("")
        (checkpoints / "sub.pt").mkdir()

        response = client.get("/api/checkpoints")

        assert response.json() == {"checkpoints": ["a.CKPT", "b.safetensors"]}

    def test_missing_directory(self, client):
        assert client.get("/api/checkpoints").json() == {"checkpoints": []}


class TestGeneration:
    def test_voice_generate(self, client, fake_worker, helper_dir, tmp_path):
        produced = tmp_path / "speech.wav"
        produced.write_bytes(b"RIFF")
        fake_worker.route("POST", "/api/predict", lambda body: (200, {"data": [{"name": str(produced)}]}))

        response = client.post("/api/voice/generate", json={"text": "hello", "output": "voice/hello.wav"})

        assert response.status_code == 200
        data = response.json()
        target = helper_dir / "output" / "voice" / "hello.wav"
        assert data["ok"] is True
        assert data["output"] == str(target)
        assert target.read_bytes() == b"RIFF"

        jobs = client.get("/api/jobs", params={"capability": "voice"}).json()
        assert jobs[0]["status"] == "completed"
        assert jobs[0]["request_id"] == data["request_id"]

    def test_bad_worker_reply_is_502(self, client, fake_worker):
        fake_worker.route("POST", "/api/predict", lambda body: (200, {"data": []}))

        response = client.post("/api/audio/generate", json={"prompt": "rain"})

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "INVALID_WORKER_RESPONSE"

    def test_missing_input_is_422(self, client):
        response = client.post("/api/unirig/rig", json={"input": "missing.glb"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "ARTIFACT_READ_FAILED"

    def test_body_validation(self, client):
        response = client.post("/api/flux/generate", json={})

        assert response.status_code == 422


class TestJobs:
    def test_unknown_capability(self, client):
        response = client.get("/api/jobs", params={"capability": "video"})

        assert response.status_code == 400

    def test_empty_history(self, client):
        assert client.get("/api/jobs").json() == []


class TestSettings:
    def test_defaults_are_seeded(self, client):
        settings = client.get("/api/settings").json()["settings"]

        assert settings["startup_poll_attempts"] == "60"
        assert settings["job_poll_interval_seconds"] == "1"

    def test_update_one(self, client):
        response = client.put("/api/settings/job_poll_attempts", json={"value": "20"})

        assert response.status_code == 200
        assert client.get("/api/settings/job_poll_attempts").json()["value"] == "20"

    @pytest.mark.parametrize("key,value", [
        ("job_poll_attempts", "1.5"),
        ("job_poll_attempts", "abc"),
        ("probe_timeout_seconds", "-1"),
    ])
    def test_invalid_values(self, client, key, value):
        response = client.put(f"/api/settings/{key}", json={"value": value})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_SETTING"

    def test_unknown_key(self, client):
        response = client.put("/api/settings/hf_token", json={"value": "x"})

        assert response.status_code == 404

    def test_bulk_update_is_all_or_nothing(self, client):
        response = client.put("/api/settings", json={"settings": {
            "startup_poll_attempts": "30", "stop_grace_seconds": "zero"}})

        assert response.status_code == 400
        assert client.get("/api/settings").json()["settings"]["startup_poll_attempts"] == "60"

        response = client.put("/api/settings", json={"settings": {"startup_poll_attempts": "30"}})

        assert response.json()["settings"]["startup_poll_attempts"] == "30"
