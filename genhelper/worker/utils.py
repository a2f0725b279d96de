"""HTTP helpers for talking to local workers.

Blocking urllib calls; async callers run them through asyncio.to_thread.
"""

from __future__ import annotations

import http.client
import json
import logging
import socket
from typing import Any, Dict, Optional
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

from .errors import InvalidWorkerResponse, WorkerRequestFailure

logger = logging.getLogger(__name__)

WORKER_HOST = "127.0.0.1"


def worker_url(port: int, path: str = "/") -> str:
    return f"http://{WORKER_HOST}:{port}{path}"


def probe_port(port: int, timeout: float = 2.0) -> bool:
    """
    Connectivity probe: GET the worker root.

    Any HTTP answer counts, including error statuses; only transport
    failures mean the worker is not up.
    """
    try:
        req = urlrequest.Request(worker_url(port), method="GET")
        with urlrequest.urlopen(req, timeout=timeout):
            return True
    except HTTPError:
        return True
    # HTTPException covers truncated replies and garbled status lines
    except (
        URLError,
        http.client.HTTPException,
        ConnectionError,
        TimeoutError,
        socket.timeout,
        OSError,
    ):
        return False


def _decode(body: bytes, url: str) -> Any:
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidWorkerResponse(f"Worker at {url} returned invalid JSON: {e}") from e


def _http_error_message(e: HTTPError) -> str:
    try:
        error_data = json.loads(e.read().decode())
        detail = error_data.get("detail") or error_data.get("error")
        if isinstance(detail, dict):
            detail = detail.get("message") or detail
        if detail:
            return f"Worker returned HTTP {e.code}: {detail}"
    except Exception:
        pass
    return f"Worker returned HTTP {e.code}: {e.reason}"


def get_json(url: str, timeout: float = 10.0) -> Any:
    """GET a JSON document from a worker."""
    req = urlrequest.Request(url, method="GET")
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            return _decode(resp.read(), url)
    except HTTPError as e:
        raise WorkerRequestFailure(_http_error_message(e)) from e
    except (URLError, http.client.HTTPException, ConnectionError, TimeoutError, socket.timeout) as e:
        raise WorkerRequestFailure(f"Request to {url} failed: {e}") from e


def post_json(url: str, payload: Dict[str, Any], timeout: float = 60.0) -> Any:
    """POST a JSON body to a worker and decode the JSON reply."""
    data = json.dumps(payload).encode()
    req = urlrequest.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            return _decode(resp.read(), url)
    except HTTPError as e:
        raise WorkerRequestFailure(_http_error_message(e)) from e
    except (URLError, http.client.HTTPException, ConnectionError, TimeoutError, socket.timeout) as e:
        raise WorkerRequestFailure(f"Request to {url} failed: {e}") from e


def try_get_json(url: str, timeout: float = 10.0) -> Optional[Any]:
    """GET that returns None instead of raising; used inside polling loops."""
    try:
        return get_json(url, timeout=timeout)
    except (WorkerRequestFailure, InvalidWorkerResponse) as e:
        logger.debug(f"Poll of {url} failed: {e}")
        return None
