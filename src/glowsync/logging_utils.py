# logging_utils.py
import logging
import sys
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

from loguru import logger

LOG_ROTATION_SIZE_BYTES = 10 * 1024 * 1024
LOG_ROTATION_MAX_AGE = timedelta(days=7)
LOG_RETENTION_MAX_FILES = 20
DEFAULT_LOG_FILENAME = "glowsync-server.log"
RotationRule = str | int | float | timedelta | Callable[[Any, Any], bool]
RetentionRule = str | int | float | timedelta | Callable[[list[Any]], Any]

# First record timestamp seen by the current file sink (for age rotation)
_rotation_started_at: float | None = None


class InterceptHandler(logging.Handler):
    """Redirect stdlib logging to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except (ValueError, TypeError):
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _default_rotation_condition(message: Any, file: Any) -> bool:
    """Rotate when the file reaches 10 MB or is older than 7 days."""
    global _rotation_started_at

    record_ts = message.record["time"].timestamp()
    if _rotation_started_at is None:
        _rotation_started_at = record_ts

    try:
        size = Path(getattr(file, "name", file)).stat().st_size
    except (OSError, TypeError, ValueError) as exc:
        logger.debug(f"Rotation check skipped; stat failed: {exc}")
        return False

    if (
        size >= LOG_ROTATION_SIZE_BYTES
        or record_ts - _rotation_started_at >= LOG_ROTATION_MAX_AGE.total_seconds()
    ):
        _rotation_started_at = record_ts
        return True
    return False


def _default_retention_policy(logs: list[Any]) -> None:
    """Keep the newest ``LOG_RETENTION_MAX_FILES`` rotated files."""
    dated: list[tuple[float, Path]] = []
    for path in logs:
        try:
            p = Path(path)
            dated.append((p.stat().st_mtime, p))
        except (OSError, TypeError, ValueError):
            continue

    dated.sort(key=lambda item: item[0], reverse=True)
    for _, path in dated[LOG_RETENTION_MAX_FILES:]:
        try:
            path.unlink()
        except OSError as exc:
            logger.debug(f"Retention skip for {path}: {exc}")


def configure_logging(
    log_dir: Path | None,
    console_level: str = "INFO",
    console_json: bool = False,
    rotation: RotationRule | None = None,
    retention: RetentionRule | None = None,
) -> None:
    """
    Set up the console sink and, when ``log_dir`` is given, a JSON file sink.

    Args:
        log_dir: Directory for `glowsync-server.log`; enables the file sink when set.
        console_level: Console level string (e.g., INFO/DEBUG).
        console_json: Emit console as JSON when True; otherwise colored text.
        rotation: loguru rotation rule (e.g., '10 MB', '1 day') or callable.
        retention: loguru retention rule (e.g., '5', '1 week') or callable.
    """
    reset_rotation_state()
    logger.remove()

    console_kwargs: dict[str, Any] = {
        "level": console_level.upper(),
        "serialize": console_json,
        "enqueue": True,
        "backtrace": False,
        "diagnose": False,
    }
    if not console_json:
        console_kwargs["format"] = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
        )
    logger.add(sys.stderr, **console_kwargs)

    if log_dir is not None:
        log_dir_path = Path(log_dir)
        try:
            log_dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error(f"Failed to create log directory {log_dir_path}: {exc}")
        else:
            log_file = log_dir_path / DEFAULT_LOG_FILENAME
            logger.add(
                log_file,
                level="DEBUG",
                serialize=True,
                rotation=rotation if rotation is not None else _default_rotation_condition,
                retention=retention if retention is not None else _default_retention_policy,
                enqueue=True,
                backtrace=False,
                diagnose=False,
            )
            logger.info(f"File logging enabled at {log_file}")

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.NOTSET, force=True)
    logging.captureWarnings(True)


def reset_rotation_state() -> None:
    """Forget the age-rotation baseline (used on reconfigure and in tests)."""
    global _rotation_started_at
    _rotation_started_at = None
