"""Structured operation logging for devicegroupctl.

Each CLI operation produces one JSON record appended to
``<logs_dir>/operations.jsonl``. Records capture the command, its arguments,
the target, the duration and a result block (status, message, errors,
warnings, changed count, exit code and free-form context).

Logging must never break a command: when the log directory cannot be created
or a write fails, the logger disables itself and subsequent operations are
silently skipped.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collect the outcome of a single logged operation."""

    def __init__(self, command: str) -> None:
        """Initialise an empty scope for *command*."""
        self.command = command
        self.op_id = uuid.uuid4().hex
        self.result: dict[str, object] | None = None

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._record(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            errors=None,
            rc=0,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record an outcome that completed with warnings."""
        self._record(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            rc=0,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome; ``errors`` defaults to ``[message]``."""
        self._record(
            "error",
            message,
            changed=0,
            warnings=None,
            errors=errors if errors else [message],
            rc=rc,
            context=context,
        )

    def _record(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Sequence[str] | None,
        errors: Sequence[str] | None,
        rc: int,
        context: Mapping[str, object] | None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "rc": rc,
            "context": _sanitize(dict(context or {})),
        }


class StructuredLogger:
    """Append structured operation records to a JSON-lines file."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*; disable logging when it cannot be created."""
        self._logs_dir = Path(logs_dir)
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Structured logging disabled: %s", exc)
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Context manager that records the outcome of *command*.

        Exceptions escaping the block are recorded as errors and re-raised.
        """
        scope = OperationScope(command)
        started = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Unhandled {type(exc).__name__}: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(
                {
                    "timestamp": datetime.now(UTC).isoformat(),
                    "op_id": scope.op_id,
                    "command": command,
                    "args": _sanitize(dict(args or {})),
                    "target": _sanitize(dict(target or {})),
                    "duration_ms": int((time.monotonic() - started) * 1000),
                    "result": scope.result,
                }
            )

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.debug("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
