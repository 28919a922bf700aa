"""Compute gateway: runs one external worker process per call.

Each worker kind maps to a fixed program. The payload goes to the worker's
stdin, a single JSON object is expected on stdout, and stderr is kept for
error context. The gateway enforces a wall-clock timeout and never retries.
"""

import os
import json
import logging
import subprocess
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

from ..errors import GatewayFailure, GatewayTimeout
from ..settings import settings

logger = logging.getLogger("fridgemate.gateway")

Payload = Union[bytes, dict]

PARSE_ERROR_MESSAGE = "worker output could not be parsed"


class WorkerKind(str, Enum):
    RECOGNITION = "recognition"
    RANKING = "ranking"


class ComputeGateway(Protocol):
    def invoke(self, kind: WorkerKind, payload: Payload) -> dict[str, Any]:
        ...


def _encode(payload: Payload) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return json.dumps(payload).encode("utf-8")


class SubprocessGateway:
    def __init__(
        self,
        commands: dict[WorkerKind, list[str]],
        timeout: float = 30.0,
        cwd: Optional[str] = None,
    ):
        self.commands = commands
        self.timeout = timeout
        self.cwd = cwd

    def invoke(self, kind: WorkerKind, payload: Payload) -> dict[str, Any]:
        command = self.commands.get(kind)
        if not command:
            raise GatewayFailure(f"No worker configured for '{kind.value}'")

        data = _encode(payload)
        logger.info(f"[{kind.value}] starting worker ({len(data)} bytes in)")

        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as e:
            logger.error(f"[{kind.value}] could not start worker {command!r}: {e}")
            raise GatewayFailure(f"Worker could not be started: {e}") from e

        try:
            stdout, stderr = proc.communicate(input=data, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            logger.error(f"[{kind.value}] worker killed after {self.timeout}s timeout")
            raise GatewayTimeout(f"{kind.value} worker timed out after {self.timeout:g}s")

        err_text = stderr.decode("utf-8", errors="replace").strip()

        if proc.returncode != 0:
            logger.error(f"[{kind.value}] exit code {proc.returncode}, stderr: {err_text}")
            raise GatewayFailure(err_text or f"{kind.value} worker failed")

        out_text = stdout.decode("utf-8", errors="replace").strip()
        try:
            result = json.loads(out_text)
        except ValueError:
            logger.error(f"[{kind.value}] unparsable output: {out_text[:500]!r}")
            raise GatewayFailure(PARSE_ERROR_MESSAGE)

        if not isinstance(result, dict):
            logger.error(f"[{kind.value}] output is not an object: {out_text[:500]!r}")
            raise GatewayFailure(PARSE_ERROR_MESSAGE)

        logger.info(f"[{kind.value}] worker finished")
        return result


Handler = Callable[[Payload], dict[str, Any]]


def _mock_recognition(payload: Payload) -> dict[str, Any]:
    return {"success": True, "message": "mock", "detections": []}


def _mock_ranking(payload: Payload) -> dict[str, Any]:
    candidates = payload.get("candidates", []) if isinstance(payload, dict) else []
    return {
        "success": True,
        "message": "mock",
        "recommendations": [{"recipeId": c["recipeId"]} for c in candidates],
    }


class InMemoryGateway:
    """Gateway fake. Handlers may return a result or raise GatewayError."""

    def __init__(self, handlers: Optional[dict[WorkerKind, Handler]] = None):
        self.handlers: dict[WorkerKind, Handler] = {
            WorkerKind.RECOGNITION: _mock_recognition,
            WorkerKind.RANKING: _mock_ranking,
        }
        if handlers:
            self.handlers.update(handlers)
        self.calls: list[tuple[WorkerKind, Payload]] = []

    def invoke(self, kind: WorkerKind, payload: Payload) -> dict[str, Any]:
        self.calls.append((kind, payload))
        return self.handlers[kind](payload)


def build_subprocess_gateway() -> SubprocessGateway:
    script_dir = os.path.abspath(settings.worker_script_dir)
    return SubprocessGateway(
        commands={
            WorkerKind.RECOGNITION: [
                settings.worker_python, os.path.join(script_dir, settings.recognition_script)
            ],
            WorkerKind.RANKING: [
                settings.worker_python, os.path.join(script_dir, settings.ranking_script)
            ],
        },
        timeout=settings.gateway_timeout_seconds,
        cwd=script_dir,
    )


_gateway: Optional[ComputeGateway] = None


def get_gateway() -> ComputeGateway:
    global _gateway
    if _gateway is None:
        if settings.gateway_mode == "mock":
            logger.warning("Compute gateway running in mock mode")
            _gateway = InMemoryGateway()
        else:
            _gateway = build_subprocess_gateway()
    return _gateway
