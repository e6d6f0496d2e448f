"""I/O helpers shared across CLI entrypoints and resolver modules."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

import yaml

from persongroup.errors import ExternalServiceError, ExternalTimeoutError

LOGGER = logging.getLogger("persongroup.io")

T = TypeVar("T")


def ensure_dir(path: Path) -> Path:
    """Create directory (and parents) if it does not exist."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    LOGGER.debug("Loaded YAML config %s -> keys=%s", path, list(data.keys()))
    return data


def _json_default(obj: Any) -> Any:
    if is_dataclass(obj):
        return asdict(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def dumps_json(data: Any, indent: Optional[int] = 2) -> str:
    """Serialize to JSON text (with dataclass support)."""
    return json.dumps(data, indent=indent, default=_json_default, ensure_ascii=False)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure application logging if not already configured."""
    if logging.getLogger().handlers:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_timestamp(value: Any) -> Optional[str]:
    """Return an ISO-8601 string for datetimes or parseable strings, else None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return normalize_timestamp(parsed)
    return None


def minutes_between(first: Optional[str], second: Optional[str]) -> Optional[float]:
    a = normalize_timestamp(first)
    b = normalize_timestamp(second)
    if a is None or b is None:
        return None
    delta = datetime.fromisoformat(b) - datetime.fromisoformat(a)
    return abs(delta.total_seconds()) / 60.0


def run_with_timeout(fn: Callable[..., T], timeout_s: Optional[float], *args: Any, **kwargs: Any) -> T:
    """Run an external call with a caller-enforced timeout.

    Any exception raised by ``fn`` is re-raised as ``ExternalServiceError``;
    exceeding ``timeout_s`` raises ``ExternalTimeoutError``. The worker thread
    is abandoned on timeout, its eventual result is discarded.
    """
    if timeout_s is None or timeout_s <= 0:
        try:
            return fn(*args, **kwargs)
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError(str(exc) or type(exc).__name__) from exc

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="persongroup-external")
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError as exc:
        future.cancel()
        raise ExternalTimeoutError(f"External call timed out after {timeout_s:.1f}s") from exc
    except ExternalServiceError:
        raise
    except Exception as exc:
        raise ExternalServiceError(str(exc) or type(exc).__name__) from exc
    finally:
        executor.shutdown(wait=False)
