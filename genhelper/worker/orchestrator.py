"""JobOrchestrator - run one generation job end to end.

Flow for every capability:
1. ensure the worker is answering (starting it if needed)
2. build the worker payload and submit it
3. for async workers, poll the history endpoint until the artifact appears
4. copy the artifact to the caller's destination

Jobs for the same worker are serialized: a worker holds one model in GPU
memory and the helper never interleaves two requests against it. Jobs on
different workers run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..config import Timings, resolve_output_path
from ..db import job_logs
from .capabilities import (
    Capability,
    CapabilityContext,
    CompletionProtocol,
    get_capability,
)
from .errors import ArtifactReadFailure, GenerationTimeout, HelperError
from .prober import ReadinessProber
from .state import HelperState
from .utils import get_json, post_json, try_get_json, worker_url

logger = logging.getLogger(__name__)

# (url, timeout) -> decoded JSON
GetJson = Callable[[str, float], Any]
# (url, payload, timeout) -> decoded JSON
PostJson = Callable[[str, Dict[str, Any], float], Any]


@dataclass
class JobResult:
    job_id: str
    capability: str
    worker: str
    output: str
    duration_ms: int


class JobOrchestrator:
    def __init__(
        self,
        state: HelperState,
        prober: ReadinessProber,
        timings: Optional[Timings] = None,
        get: Optional[GetJson] = None,
        post: Optional[PostJson] = None,
        poll: Optional[GetJson] = None,
    ):
        self.state = state
        self.prober = prober
        self.timings = timings or Timings()
        self._get = get or get_json
        self._post = post or post_json
        self._poll = poll or try_get_json
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, worker: str) -> asyncio.Lock:
        lock = self._locks.get(worker)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[worker] = lock
        return lock

    def busy(self, worker: str) -> bool:
        """True while a job holds this worker."""
        lock = self._locks.get(worker)
        return lock is not None and lock.locked()

    # ------------------------------------------------------------------
    # Job history
    # ------------------------------------------------------------------

    def _record_start(self, capability: str, worker: str, job_id: str) -> Optional[int]:
        try:
            return job_logs.create_log(capability, worker, request_id=job_id)
        except sqlite3.Error as e:
            logger.warning(f"Failed to record job start for {job_id}: {e}")
            return None

    def _record_end(
        self,
        log_id: Optional[int],
        duration_ms: int,
        artifact: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if log_id is None:
            return
        try:
            job_logs.complete_log(
                log_id,
                duration_ms=duration_ms,
                status="failed" if error_code else "completed",
                artifact_path=artifact,
                error_code=error_code,
                error_message=error_message,
            )
        except sqlite3.Error as e:
            logger.warning(f"Failed to record job completion for log {log_id}: {e}")

    def _fail(self, worker: str, log_id: Optional[int], started: float, code: str, message: str) -> None:
        duration_ms = int((time.time() - started) * 1000)
        self.state.log(worker, f"Job failed: {message}")
        self._record_end(log_id, duration_ms, error_code=code, error_message=message)

    # ------------------------------------------------------------------
    # Protocol steps
    # ------------------------------------------------------------------

    def _context(self, worker: str, port: int) -> CapabilityContext:
        async def fetch(path: str) -> Any:
            return await asyncio.to_thread(
                self._get, worker_url(port, path), self.timings.probe_timeout * 5
            )

        return CapabilityContext(
            helper_dir=self.state.helper_dir,
            fetch_json=fetch,
            log=lambda msg: self.state.log(worker, msg),
        )

    async def _wait_for_completion(self, capability: Capability, port: int, job_id: str) -> str:
        """Poll the status endpoint until the artifact is reported."""
        url = worker_url(port, capability.status_path(job_id))
        attempts = self.timings.job_poll_attempts

        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self.timings.job_poll_interval)
            reply = await asyncio.to_thread(self._poll, url, self.timings.probe_timeout * 5)
            if reply is None:
                continue
            reference = capability.parse_status(reply, job_id)
            if reference is not None:
                logger.info(f"Job {job_id} on {capability.worker} completed after {attempt} poll(s)")
                return reference

        raise GenerationTimeout(capability.worker, job_id, attempts)

    def _deliver(self, source: Path, destination: Optional[str]) -> Path:
        """Copy the artifact to the destination, or hand back the worker's own path."""
        if not destination:
            return source
        if not source.is_file():
            raise ArtifactReadFailure(f"Artifact not found at {source}")

        target = resolve_output_path(destination, self.state.helper_dir)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.resolve() != target.resolve():
                shutil.copyfile(source, target)
        except OSError as e:
            raise ArtifactReadFailure(f"Failed to write artifact to {target}: {e}") from e
        return target

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, capability_name: str, inputs: Any) -> JobResult:
        """
        Run one job to completion.

        Args:
            capability_name: image, mesh, rig, motion, voice or audio
            inputs: the capability's input model or an equivalent dict

        Returns:
            JobResult with the final artifact path

        Raises:
            HelperError subclasses; the job history row records the code
        """
        capability = get_capability(capability_name)
        request = capability.parse_input(inputs)
        worker = capability.worker
        descriptor = self.state.descriptor(worker)
        job_id = uuid.uuid4().hex[:12]

        async with self._lock_for(worker):
            started = time.time()
            log_id = self._record_start(capability.name, worker, job_id)
            self.state.log(worker, capability.describe(request))

            try:
                await self.prober.ensure_running(worker, descriptor.port)

                ctx = self._context(worker, descriptor.port)
                payload = await capability.build_payload(request, ctx)
                reply = await asyncio.to_thread(
                    self._post,
                    worker_url(descriptor.port, capability.submit_path),
                    payload,
                    self.timings.request_timeout,
                )

                if capability.protocol == CompletionProtocol.ASYNC_BY_ID:
                    worker_job = capability.parse_submission(reply)
                    self.state.log(worker, f"Queued, prompt ID: {worker_job}")
                    reference = await self._wait_for_completion(
                        capability, descriptor.port, worker_job
                    )
                else:
                    reference = capability.parse_result(reply)

                source = capability.artifact_path(reference, self.state.helper_dir)
                final = self._deliver(source, capability.destination(request))

            except HelperError as e:
                self._fail(worker, log_id, started, e.code, e.message)
                raise
            except asyncio.CancelledError:
                self._fail(worker, log_id, started, "CANCELLED", "Job was cancelled")
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in job {job_id} on {worker}")
                self._fail(worker, log_id, started, "INTERNAL_ERROR", str(e) or type(e).__name__)
                raise

            duration_ms = int((time.time() - started) * 1000)
            self.state.log(worker, f"Saved to: {final}")
            self._record_end(log_id, duration_ms, artifact=str(final))

            return JobResult(
                job_id=job_id,
                capability=capability.name,
                worker=worker,
                output=str(final),
                duration_ms=duration_ms,
            )
