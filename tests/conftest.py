"""Shared fixtures: an isolated helper root and fake HTTP workers."""

import json
import os
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import pytest

from genhelper.config import HELPER_DIR_ENV, Timings
from genhelper.worker.catalog import WORKERS, WorkerDescriptor
from genhelper.worker.state import HelperState

# (json_body or None) -> (status, json_reply)
Route = Callable[[Optional[Any]], Tuple[int, Any]]

# Reply marker: declare a long body, send a few bytes, then hang up
TRUNCATED = object()


class FakeWorker:
    """Minimal JSON HTTP server standing in for a worker."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.calls: list = []
        worker = self

        class Handler(BaseHTTPRequestHandler):
            def _dispatch(self, method: str) -> None:
                body = None
                length = int(self.headers.get("Content-Length") or 0)
                if length:
                    body = json.loads(self.rfile.read(length))
                worker.calls.append((method, self.path, body))

                route = worker.routes.get((method, self.path))
                if route is None:
                    self.send_error(404)
                    return
                status, reply = route(body)
                if reply is TRUNCATED:
                    self.send_response(status)
                    self.send_header("Content-Length", "100")
                    self.end_headers()
                    self.wfile.write(b"{\"ok\"")
                    self.close_connection = True
                    return
                data = json.dumps(reply).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            def do_GET(self):
                self._dispatch("GET")

            def do_POST(self):
                self._dispatch("POST")

            def log_message(self, format, *args):
                pass

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.port = self.server.server_address[1]
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def route(self, method: str, path: str, handler: Route) -> None:
        self.routes[(method, path)] = handler

    def calls_to(self, path: str) -> list:
        return [c for c in self.calls if c[1] == path]

    def start(self) -> "FakeWorker":
        self._thread.start()
        return self

    def stop(self) -> None:
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def helper_dir(tmp_path, monkeypatch):
    """Helper root on tmp_path with its database initialized."""
    from genhelper.db.job_logs import ensure_table
    from genhelper.db.settings import init_settings_table

    root = tmp_path / "helper"
    root.mkdir()
    monkeypatch.setenv(HELPER_DIR_ENV, str(root))
    init_settings_table()
    ensure_table()
    return root


@pytest.fixture
def fast_timings():
    return Timings(
        startup_poll_interval=0.01,
        startup_poll_attempts=5,
        job_poll_interval=0.01,
        job_poll_attempts=10,
        probe_timeout=0.5,
        request_timeout=5.0,
        stop_grace=0.01,
    )


@pytest.fixture
def state(helper_dir):
    s = HelperState.create(helper_dir)
    yield s
    s.log_sink.close()


@pytest.fixture
def fake_worker():
    worker = FakeWorker().start()
    yield worker
    worker.stop()


def descriptor_on_port(name: str, port: int, **overrides) -> WorkerDescriptor:
    """Catalog entry for ``name`` moved to another port."""
    base = next(w for w in WORKERS if w.name == name)
    fields = {
        "name": base.name,
        "port": port,
        "repository_url": base.repository_url,
        "launch_args": base.launch_args,
        "requirement_files": base.requirement_files,
        "extra_packages": base.extra_packages,
        "install_torch": base.install_torch,
    }
    fields.update(overrides)
    return WorkerDescriptor(**fields)


def make_installed(helper_dir: Path, descriptor: WorkerDescriptor) -> Path:
    """Lay out a worker root whose venv interpreter is the test interpreter."""
    python = descriptor.python(helper_dir)
    python.parent.mkdir(parents=True)
    if os.name == "nt":
        python.write_bytes(Path(sys.executable).read_bytes())
    else:
        python.symlink_to(sys.executable)
    return descriptor.root(helper_dir)
