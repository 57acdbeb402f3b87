from __future__ import annotations

import contextvars
import logging
import logging.config
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping

# ----------------------------------------------------------------------
# Environment-driven defaults
# ----------------------------------------------------------------------

DEFAULT_LOG_LEVEL = (
    os.getenv("RNN_CLASSIFICATION_LOG_LEVEL")
    or os.getenv("LOG_LEVEL", "INFO")
).upper()

DEFAULT_LOG_DIR = Path(
    os.getenv("RNN_CLASSIFICATION_LOG_DIR") or os.getenv("LOG_DIR", "logs")
)

# Decides handler behaviour (console-only vs file+console).
APP_ENV = (
    os.getenv("RNN_CLASSIFICATION_ENV")
    or os.getenv("ENV")
    or "dev"
).lower()

AUTO_CONFIG = os.getenv("RNN_CLASSIFICATION_CONFIGURE_LOGGING", "1").lower() not in {
    "0",
    "false",
    "no",
}

# "text" (default) or "json".
LOG_FORMAT = os.getenv("RNN_CLASSIFICATION_LOG_FORMAT", "text").lower()

PACKAGE_LOGGER = "rnn_classification"
DEFAULT_RUN_NAME = "rnn_classification"

# Placeholder for records emitted outside any booked method.
NO_METHOD = "-"

_LOG_CONFIGURED = False

_current_method: contextvars.ContextVar[str] = contextvars.ContextVar(
    "rnn_classification_method", default=NO_METHOD
)


# ----------------------------------------------------------------------
# Per-method context
# ----------------------------------------------------------------------


@contextmanager
def method_context(name: str) -> Iterator[None]:
    """Tag every record logged inside the block with booked method ``name``.

        with method_context("TMVA_LSTM"):
            method.train()   # records carry method="TMVA_LSTM"
    """
    token = _current_method.set(name)
    try:
        yield
    finally:
        _current_method.reset(token)


def current_method() -> str:
    return _current_method.get()


class MethodContextFilter(logging.Filter):
    """Stamp ``record.method`` so formatters can print ``%(method)s``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "method"):
            record.method = _current_method.get()
        return True


def _supports_json_logging() -> bool:
    """Return True if python-json-logger can be imported."""
    try:
        import pythonjsonlogger  # type: ignore[unused-import]  # noqa: F401
    except ImportError:
        return False
    return True


def _build_formatters(fmt: str) -> dict[str, Any]:
    if fmt == "json" and _supports_json_logging():
        return {
            "json": {
                "class": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(method)s %(message)s",
            },
            "json_verbose": {
                "class": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": (
                    "%(asctime)s %(levelname)s %(name)s %(method)s "
                    "%(filename)s %(lineno)d %(message)s"
                ),
            },
        }

    return {
        "standard": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s [%(method)s] - %(message)s",
        },
        "verbose": {
            "format": (
                "[%(asctime)s] [%(levelname)s] %(name)s [%(method)s] "
                "(%(filename)s:%(lineno)d) - %(message)s"
            ),
        },
    }


def log_file_name(run_name: str | None = None) -> str:
    """File name of the rotating log for a run, e.g. ``TMVAClassification.log``."""
    stem = (run_name or DEFAULT_RUN_NAME).strip()
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in stem)
    return f"{safe or DEFAULT_RUN_NAME}.log"


def _build_logging_config(
    env: str,
    log_dir: Path,
    level: str,
    fmt: str,
    run_name: str | None = None,
) -> dict[str, Any]:
    """Return a dictConfig-style logging configuration.

    A console handler is always attached. The rotating file handler
    (``<log_dir>/<run_name>.log``) is only wired up in 'prod'. Every
    handler runs the method filter so records carry the booked method.
    """
    formatters = _build_formatters(fmt)

    if "json" in formatters:
        console_formatter = "json"
        file_formatter = "json_verbose"
    else:
        console_formatter = "standard"
        file_formatter = "verbose"

    env = env.lower()
    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": console_formatter,
            "filters": ["method"],
            "stream": "ext://sys.stdout",
        },
    }

    if env in {"prod", "production"}:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": file_formatter,
            "filters": ["method"],
            "filename": str(log_dir / log_file_name(run_name)),
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "encoding": "utf-8",
        }
        active = ["console", "file"]
    else:
        active = ["console"]

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "method": {"()": MethodContextFilter},
        },
        "formatters": formatters,
        "handlers": handlers,
        "root": {
            "level": level,
            "handlers": active,
        },
        "loggers": {
            PACKAGE_LOGGER: {
                "level": level,
                "handlers": active,
                "propagate": False,
            },
        },
    }


def configure_logging(
    *,
    level: str | None = None,
    log_dir: Path | str | None = None,
    env: str | None = None,
    fmt: str | None = None,
    run_name: str | None = None,
    extra_config: Mapping[str, Any] | None = None,
    force: bool = False,
) -> None:
    """Configure the global logging system.

    Typically called once at process startup (the CLI does it for you).

    Parameters
    ----------
    level:
        Log level ("DEBUG", "INFO", ...). Defaults to env or "INFO".
    log_dir:
        Directory for the rotating log file (prod only). Defaults to env or "logs".
    env:
        Application environment ("dev", "prod", "test").
    fmt:
        "text" (default) or "json".
    run_name:
        Names the rotating log file (``<run_name>.log``). Defaults to
        "rnn_classification".
    extra_config:
        Optional dictConfig-style overrides merged (shallowly) into the base config.
    force:
        Re-configure even if logging was already configured.
    """
    global _LOG_CONFIGURED

    if _LOG_CONFIGURED and not force:
        return

    effective_level = (level or DEFAULT_LOG_LEVEL).upper()
    effective_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
    effective_env = (env or APP_ENV).lower()
    effective_fmt = (fmt or LOG_FORMAT).lower()

    if effective_fmt == "json" and not _supports_json_logging():
        logging.getLogger(__name__).warning(
            "JSON logging requested but python-json-logger is not installed; "
            "falling back to text format."
        )
        effective_fmt = "text"

    config = _build_logging_config(
        env=effective_env,
        log_dir=effective_dir,
        level=effective_level,
        fmt=effective_fmt,
        run_name=run_name,
    )

    if extra_config:
        for key, value in extra_config.items():
            if isinstance(value, dict) and key in config and isinstance(config[key], dict):
                config[key].update(value)
            else:
                config[key] = value

    logging.config.dictConfig(config)
    _LOG_CONFIGURED = True


def configure_logging_from_app_config(
    app_config: Any,
    *,
    fmt: str | None = None,
    force: bool = False,
) -> None:
    """Configure logging from an ``AppConfig``.

    Reads env, log_level, experiment_name and paths.base_dir; the prod log
    file lands in ``<base_dir>/logs/<experiment_name>.log``. Typed as
    ``Any`` to avoid an import cycle with ``config``.
    """
    env = getattr(app_config, "env", "dev")
    level = getattr(app_config, "log_level", "INFO")
    run_name = getattr(app_config, "experiment_name", None)
    paths = getattr(app_config, "paths", None)

    if paths is not None and hasattr(paths, "base_dir"):
        log_dir = Path(paths.base_dir) / "logs"
    else:
        log_dir = DEFAULT_LOG_DIR

    configure_logging(
        level=str(level),
        log_dir=log_dir,
        env=str(env),
        fmt=fmt,
        run_name=run_name,
        force=force,
    )


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger, configuring logging on first use.

    With RNN_CLASSIFICATION_CONFIGURE_LOGGING=0 the host application's
    logging setup is left untouched.

        from rnn_classification.logging_config import get_logger

        logger = get_logger(__name__)
        logger.info("Generating event ... %d", i)
    """
    if not _LOG_CONFIGURED and AUTO_CONFIG:
        configure_logging()

    return logging.getLogger(name)
