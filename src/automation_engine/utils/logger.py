import json
import logging
import logging.config
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from logging import Logger
from pathlib import Path
from typing import Any

_DEBUG_ENABLED = False
_DEBUG_MODULES: set[str] = set()
_SENSOR: str | None = None
_PROFILE: str | None = None

# ---------------------------------------------------------------------
# Canonical log categories (semantic contract)
# ---------------------------------------------------------------------

CATEGORY_EVALUATION = "evaluation_trace"
CATEGORY_REQUEST = "request_emission"
CATEGORY_CONFIGURATION = "configuration"
CATEGORY_HEARTBEAT = "health_heartbeat"

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _merge_profile(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        nested = out.get(key)
        out[key] = _merge_profile(nested, value) if isinstance(value, dict) and isinstance(nested, dict) else value
    return out


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _dict_config(profile: dict[str, Any]) -> dict[str, Any]:
    """Translate a merged profile into a `logging.config.dictConfig` payload."""
    level = str(profile.get("level", "INFO")).upper()
    console = _as_dict(_as_dict(profile.get("handlers")).get("console"))
    as_json = bool(_as_dict(profile.get("format")).get("json", True))

    handlers: dict[str, Any] = {}
    if console.get("enabled", True):
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "level": str(console.get("level", level)).upper(),
            "formatter": "json" if as_json else "plain",
            "filters": ["context"],
        }

    module = __name__
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"context": {"()": f"{module}.ContextFilter"}},
        "formatters": {
            "json": {"()": f"{module}.JsonFormatter"},
            "plain": {"()": f"{module}.UtcFormatter", "format": _PLAIN_FORMAT},
        },
        "handlers": handlers,
        "root": {"level": level, "handlers": list(handlers)},
    }


def init_logging(
    config_path: str = "configs/logging.json",
    *,
    sensor: str | None = None,
    profile: str | None = None,
) -> None:
    """Configure process-wide logging from a JSON profile file.

    The file holds ``{"active_profile": ..., "profiles": {name: {...}}}``; the
    selected profile is merged over ``default``.
    """
    global _DEBUG_ENABLED, _DEBUG_MODULES, _SENSOR, _PROFILE

    path = Path(config_path)
    cfg = json.loads(path.read_text(encoding="utf-8"))

    profiles = cfg.get("profiles")
    if not isinstance(profiles, dict):
        raise TypeError(f"{path}: 'profiles' must be an object")
    name = str(profile or cfg.get("active_profile") or "default")
    if name not in profiles:
        raise KeyError(f"logging profile not found: {name}")
    merged = _merge_profile(_as_dict(profiles.get("default")), _as_dict(profiles[name]))

    debug = _as_dict(merged.get("debug"))
    _DEBUG_ENABLED = bool(debug.get("enabled", False))
    _DEBUG_MODULES = {str(m) for m in debug.get("modules", [])}
    _SENSOR, _PROFILE = sensor, name

    logging.config.dictConfig(_dict_config(merged))


class ContextFilter(logging.Filter):
    """Gives every record a `context` dict tagged with the sensor and profile."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = getattr(record, "context", None)
        if ctx is None:
            ctx = {}
            record.context = ctx
        if _SENSOR is not None:
            ctx.setdefault("sensor", _SENSOR)
        if _PROFILE is not None:
            ctx.setdefault("profile", _PROFILE)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `category` is lifted out of `context`."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        context = dict(getattr(record, "context", None) or {})
        category = context.pop("category", None)
        if category is not None:
            payload["category"] = category
        if context:
            payload["context"] = safe_jsonable(context)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class UtcFormatter(logging.Formatter):
    converter = time.gmtime


def get_logger(name: str = "automation_engine") -> Logger:
    return logging.getLogger(name)


def safe_jsonable(x: Any) -> Any:
    """Best-effort conversion of log context values into JSON-ready data."""
    if x is None or isinstance(x, (str, int, float, bool)):
        return x
    if isinstance(x, datetime):
        aware = x if x.tzinfo is not None else x.replace(tzinfo=timezone.utc)
        return aware.astimezone(timezone.utc).isoformat()
    if callable(getattr(x, "to_dict", None)) and not isinstance(x, type):
        return safe_jsonable(x.to_dict())
    if isinstance(x, Mapping):
        return {k if isinstance(k, str) else repr(k): safe_jsonable(v) for k, v in x.items()}
    if isinstance(x, (set, frozenset)):
        return sorted((safe_jsonable(v) for v in x), key=repr)
    if isinstance(x, (list, tuple)):
        return [safe_jsonable(v) for v in x]
    return str(x)


def _debug_module_matches(logger_name: str, module: str) -> bool:
    module = module.strip()
    if not module:
        return False
    return logger_name == module or logger_name.startswith(f"{module}.") or module in logger_name.split(".")


def _emit(logger: Logger, level: int, msg: str, context: dict[str, Any], category: str | None = None, **kw) -> None:
    if category is not None:
        context["category"] = category
    logger.log(level, msg, extra={"context": {k: safe_jsonable(v) for k, v in context.items()}}, **kw)


def log_debug(logger: Logger, msg: str, **context):
    if not _DEBUG_ENABLED:
        return
    if _DEBUG_MODULES and not any(_debug_module_matches(logger.name, m) for m in _DEBUG_MODULES):
        return
    _emit(logger, logging.DEBUG, msg, context)


def log_info(logger: Logger, msg: str, **context):
    _emit(logger, logging.INFO, msg, context)


def log_warn(logger: Logger, msg: str, **context):
    _emit(logger, logging.WARNING, msg, context)


def log_error(logger: Logger, msg: str, **context):
    _emit(logger, logging.ERROR, msg, context)


def log_exception(logger: Logger, msg: str, **context):
    _emit(logger, logging.ERROR, msg, context, exc_info=True)

# ---------------------------------------------------------------------
# Domain-specific logging helpers (semantic, not infrastructural)
# ---------------------------------------------------------------------

def log_evaluation(logger: Logger, msg: str, **context):
    """
    Per-entity evaluation trace.
    Expected context: entity, tick, requested, candidate_size, warnings
    """
    _emit(logger, logging.INFO, msg, context, CATEGORY_EVALUATION)


def log_request(logger: Logger, msg: str, **context):
    """
    Request subsets handed to the run-request sink.
    Expected context: tick, entities, partitions
    """
    _emit(logger, logging.INFO, msg, context, CATEGORY_REQUEST)


def log_configuration(logger: Logger, msg: str, **context):
    """
    Configuration problems: cycles, entity caps, forbidden custom code.
    Expected context: entity, reason
    """
    _emit(logger, logging.WARNING, msg, context, CATEGORY_CONFIGURATION)


def log_heartbeat(logger: Logger, msg: str, **context):
    """
    Driver liveness.
    Expected context: tick, elapsed_ms, entities
    """
    _emit(logger, logging.INFO, msg, context, CATEGORY_HEARTBEAT)
