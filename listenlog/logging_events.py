"""``log_event``: one structured log line per noteworthy thing that happened."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any

_PRIMITIVES = (str, int, float, bool, type(None))

# Attributes of LogRecord itself; passing them through ``extra`` raises KeyError.
_RESERVED_FIELDS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _check_json(value: Any, path: str) -> None:
    if isinstance(value, _PRIMITIVES):
        return
    if isinstance(value, Mapping):
        for key, nested in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Keys in '{path}' must be strings")
            _check_json(nested, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, nested in enumerate(value):
            _check_json(nested, f"{path}[{index}]")
    else:
        raise TypeError(f"Unsupported value in '{path}': {type(value).__name__}")


def log_event(
    logger: logging.Logger | logging.LoggerAdapter,
    event: str,
    /,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Log ``event`` with ``fields`` attached to the record.

    Top-level fields must be JSON primitives so log processors can index them;
    anything nested belongs in the ``meta`` mapping. An INFO event reporting
    ``status="error"`` is logged as WARNING.
    """

    if not event or not event.strip():
        raise ValueError("event must be a non-empty string")

    meta = fields.pop("meta", None)
    extra: dict[str, Any] = {"event": event}
    for name, value in fields.items():
        if name in _RESERVED_FIELDS:
            raise ValueError(f"'{name}' clashes with a LogRecord attribute")
        if not isinstance(value, _PRIMITIVES):
            raise TypeError(f"Field '{name}' must be a flat JSON-compatible value")
        extra[name] = value
    if meta is not None:
        if not isinstance(meta, Mapping):
            raise TypeError("meta must be a mapping if provided")
        _check_json(meta, "meta")
        extra["meta"] = dict(meta)

    if level == logging.INFO and fields.get("status") == "error":
        level = logging.WARNING
    logger.log(level, event, extra=extra)


__all__ = ["log_event"]
