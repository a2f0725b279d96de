"""Tests for end-to-end job orchestration against fake workers."""

import asyncio
import os
import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import TRUNCATED, descriptor_on_port
from genhelper.db.job_logs import get_recent_logs
from genhelper.worker.errors import (
    GenerationTimeout,
    InvalidWorkerResponse,
    NotInstalled,
    WorkerLaunchFailure,
    WorkerRequestFailure,
)
from genhelper.worker.orchestrator import JobOrchestrator
from genhelper.worker.prober import ReadinessProber
from genhelper.worker.state import HelperState
from genhelper.worker.supervisor import WorkerSupervisor


@pytest.fixture
def worker_state(helper_dir, fake_worker):
    """Every worker of interest points at the fake worker's port."""
    descriptors = [
        descriptor_on_port(name, fake_worker.port)
        for name in ("comfyui", "chatterbox", "hy-motion", "stable-audio")
    ]
    state = HelperState.create(helper_dir, workers=descriptors)
    yield state
    state.log_sink.close()


@pytest.fixture
def orchestrator(worker_state, fast_timings):
    prober = ReadinessProber(worker_state, MagicMock(spec=WorkerSupervisor), fast_timings)
    return JobOrchestrator(worker_state, prober, fast_timings)


def _history_after(polls: int, job_id: str, filename: str):
    """History handler that reports completion on the given poll."""
    count = {"n": 0}

    def handler(body):
        count["n"] += 1
        if count["n"] < polls:
            return 200, {}
        return 200, {job_id: {"outputs": {"9": {"images": [
            {"filename": filename, "subfolder": "", "type": "output"}]}}}}

    return handler


class TestAsyncProtocol:
    @pytest.mark.asyncio
    async def test_image_completes_on_fifth_poll(self, orchestrator, fake_worker, helper_dir):
        """Submit, poll until the history reports the file, then copy it"""
        artifact = helper_dir / "comfyui" / "output" / "flux_output_00001_.png"
        artifact.parent.mkdir(parents=True)
        artifact.write_bytes(b"PNGDATA")
        fake_worker.route("POST", "/prompt", lambda body: (200, {"prompt_id": "p1", "number": 0}))
        fake_worker.route("GET", "/history/p1", _history_after(5, "p1", artifact.name))

        result = await orchestrator.submit(
            "image", {"prompt": "a fox", "model": "flux.safetensors", "output": "images/fox.png"}
        )

        target = helper_dir / "output" / "images" / "fox.png"
        assert result.output == str(target)
        assert target.read_bytes() == b"PNGDATA"
        assert len(fake_worker.calls_to("/history/p1")) == 5

        submitted = fake_worker.calls_to("/prompt")[0][2]
        assert submitted["prompt"]["6"]["inputs"]["text"] == "a fox"

        row = get_recent_logs(limit=1)[0]
        assert (row["capability"], row["worker"], row["status"]) == ("image", "comfyui", "completed")
        assert row["artifact_path"] == str(target)
        assert row["request_id"] == result.job_id

    @pytest.mark.asyncio
    async def test_never_completes(self, orchestrator, fake_worker, fast_timings):
        fake_worker.route("POST", "/prompt", lambda body: (200, {"prompt_id": "p2"}))
        fake_worker.route("GET", "/history/p2", lambda body: (200, {}))

        with pytest.raises(GenerationTimeout) as exc_info:
            await orchestrator.submit("image", {"prompt": "x", "model": "m.ckpt"})

        assert exc_info.value.job_id == "p2"
        assert len(fake_worker.calls_to("/history/p2")) == fast_timings.job_poll_attempts

        row = get_recent_logs(limit=1)[0]
        assert (row["status"], row["error_code"]) == ("failed", "GENERATION_TIMEOUT")

    @pytest.mark.asyncio
    async def test_failed_polls_are_retried(self, orchestrator, fake_worker, helper_dir):
        """A transient poll error counts as not-yet-complete"""
        artifact = helper_dir / "comfyui" / "output" / "a.png"
        artifact.parent.mkdir(parents=True)
        artifact.write_bytes(b"x")
        replies = iter([(500, {"error": "busy"}), (200, {"p3": {"outputs": {"9": {"images": [{"filename": "a.png"}]}}}})])
        fake_worker.route("POST", "/prompt", lambda body: (200, {"prompt_id": "p3"}))
        fake_worker.route("GET", "/history/p3", lambda body: next(replies))

        result = await orchestrator.submit("image", {"prompt": "x", "model": "m.ckpt"})

        # No destination: the worker's own file is returned
        assert result.output == str(artifact)

    @pytest.mark.asyncio
    async def test_truncated_poll_is_retried(self, orchestrator, fake_worker, helper_dir):
        """A worker hanging up mid-reply counts as not-yet-complete"""
        artifact = helper_dir / "comfyui" / "output" / "b.png"
        artifact.parent.mkdir(parents=True)
        artifact.write_bytes(b"x")
        replies = iter([(200, TRUNCATED), (200, {"p5": {"outputs": {"9": {"images": [{"filename": "b.png"}]}}}})])
        fake_worker.route("POST", "/prompt", lambda body: (200, {"prompt_id": "p5"}))
        fake_worker.route("GET", "/history/p5", lambda body: next(replies))

        result = await orchestrator.submit("image", {"prompt": "x", "model": "m.ckpt"})

        assert result.output == str(artifact)
        assert len(fake_worker.calls_to("/history/p5")) == 2
        assert get_recent_logs(limit=1)[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_missing_artifact_file(self, orchestrator, fake_worker):
        from genhelper.worker.errors import ArtifactReadFailure

        fake_worker.route("POST", "/prompt", lambda body: (200, {"prompt_id": "p4"}))
        fake_worker.route("GET", "/history/p4", _history_after(1, "p4", "gone.png"))

        with pytest.raises(ArtifactReadFailure):
            await orchestrator.submit("image", {"prompt": "x", "model": "m.ckpt", "output": "images/gone.png"})


class TestSyncProtocol:
    @pytest.mark.asyncio
    async def test_voice_returns_worker_path(self, orchestrator, fake_worker, tmp_path):
        produced = tmp_path / "gradio" / "speech.wav"
        produced.parent.mkdir()
        produced.write_bytes(b"RIFF")
        fake_worker.route("POST", "/api/predict", lambda body: (200, {"data": [{"name": str(produced)}]}))

        result = await orchestrator.submit("voice", {"text": "hello"})

        assert result.output == str(produced)
        assert fake_worker.calls_to("/api/predict")[0][2] == {"data": ["hello", 0.5, 0.5], "fn_index": 0}

    @pytest.mark.asyncio
    async def test_voice_without_output_passes_path_through(self, orchestrator, fake_worker, tmp_path):
        """With no destination the worker's path is returned even if it is not local"""
        remote = tmp_path / "elsewhere" / "speech.wav"
        fake_worker.route("POST", "/api/predict", lambda body: (200, {"data": [{"name": str(remote)}]}))

        result = await orchestrator.submit("voice", {"text": "hello"})

        assert result.output == str(remote)
        assert get_recent_logs(limit=1)[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_motion_overwrites_model(self, orchestrator, fake_worker, tmp_path):
        model = tmp_path / "hero.glb"
        model.write_bytes(b"RIGGED")
        animated = tmp_path / "animated.glb"
        animated.write_bytes(b"ANIMATED")
        fake_worker.route("POST", "/api/predict", lambda body: (200, {"data": [{"name": str(animated)}]}))

        result = await orchestrator.submit("motion", {"model": str(model), "motions": ["walk"]})

        assert result.output == str(model)
        assert model.read_bytes() == b"ANIMATED"

    @pytest.mark.asyncio
    async def test_malformed_reply(self, orchestrator, fake_worker):
        fake_worker.route("POST", "/api/predict", lambda body: (200, {"data": []}))

        with pytest.raises(InvalidWorkerResponse):
            await orchestrator.submit("voice", {"text": "hello"})

        row = get_recent_logs(limit=1)[0]
        assert row["error_code"] == "INVALID_WORKER_RESPONSE"

    @pytest.mark.asyncio
    async def test_http_error_is_request_failure(self, orchestrator, fake_worker):
        fake_worker.route("POST", "/api/predict", lambda body: (500, {"detail": "CUDA out of memory"}))

        with pytest.raises(WorkerRequestFailure, match="CUDA out of memory"):
            await orchestrator.submit("audio", {"prompt": "rain"})


class TestSerialization:
    @pytest.mark.asyncio
    async def test_jobs_on_one_worker_never_overlap(self, orchestrator, fake_worker, tmp_path):
        produced = tmp_path / "a.wav"
        produced.write_bytes(b"x")
        active = {"now": 0, "max": 0}
        lock = threading.Lock()

        def slow(body):
            with lock:
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
            time.sleep(0.1)
            with lock:
                active["now"] -= 1
            return 200, {"data": [{"name": str(produced)}]}

        fake_worker.route("POST", "/api/predict", slow)

        await asyncio.gather(*(orchestrator.submit("voice", {"text": str(i)}) for i in range(3)))

        assert active["max"] == 1
        assert len(fake_worker.calls_to("/api/predict")) == 3


class TestNotRunning:
    @pytest.mark.asyncio
    async def test_uninstalled_worker(self, state, fast_timings):
        async def closed(port):
            return False

        prober = ReadinessProber(state, MagicMock(spec=WorkerSupervisor), fast_timings, probe=closed)
        orchestrator = JobOrchestrator(state, prober, fast_timings)

        with pytest.raises(NotInstalled):
            await orchestrator.submit("voice", {"text": "hi"})

        assert "Job failed" in state.log_sink.read("chatterbox")[-1].message

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    async def test_unlaunchable_interpreter_is_recorded(self, state, helper_dir, fast_timings):
        python = state.descriptor("chatterbox").python(helper_dir)
        python.parent.mkdir(parents=True)
        python.write_text("#!/bin/sh\n")
        python.chmod(0o644)

        async def closed(port):
            return False

        prober = ReadinessProber(state, WorkerSupervisor(state), fast_timings, probe=closed)
        orchestrator = JobOrchestrator(state, prober, fast_timings)

        with pytest.raises(WorkerLaunchFailure):
            await orchestrator.submit("voice", {"text": "hi"})

        row = get_recent_logs(limit=1)[0]
        assert (row["status"], row["error_code"]) == ("failed", "WORKER_LAUNCH_FAILED")
        assert "Job failed" in state.log_sink.read("chatterbox")[-1].message


class TestUnexpectedFailures:
    @pytest.mark.asyncio
    async def test_uncoded_error_is_recorded(self, worker_state, fast_timings):
        def broken_post(url, payload, timeout):
            raise RuntimeError("disk full")

        prober = ReadinessProber(worker_state, MagicMock(spec=WorkerSupervisor), fast_timings)
        orchestrator = JobOrchestrator(worker_state, prober, fast_timings, post=broken_post)

        with pytest.raises(RuntimeError):
            await orchestrator.submit("voice", {"text": "hi"})

        row = get_recent_logs(limit=1)[0]
        assert (row["status"], row["error_code"]) == ("failed", "INTERNAL_ERROR")
        assert row["error_message"] == "disk full"
        assert worker_state.log_sink.read("chatterbox")[-1].message == "Job failed: disk full"

    @pytest.mark.asyncio
    async def test_cancelled_job_is_recorded(self, orchestrator, fake_worker, worker_state):
        fake_worker.route("POST", "/prompt", lambda body: (200, {"prompt_id": "p6"}))
        fake_worker.route("GET", "/history/p6", lambda body: (200, {}))

        task = asyncio.create_task(orchestrator.submit("image", {"prompt": "x", "model": "m.ckpt"}))
        while not fake_worker.calls_to("/history/p6"):
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        row = get_recent_logs(limit=1)[0]
        assert (row["status"], row["error_code"]) == ("failed", "CANCELLED")
        assert not orchestrator.busy("comfyui")
        assert "Job failed" in worker_state.log_sink.read("comfyui")[-1].message
