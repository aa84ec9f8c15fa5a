# src/agentloop/logging_config.py
"""
Unified Logging Configuration for agentloop.

One place to set up logging for an agent process: the scheduler, the
planner, capability providers and storage backends all log through
module-level ``logging.getLogger(__name__)`` loggers, and this module
decides where those records go.

Key concepts:

    **Display filter**: When ``console_enabled=False`` (the default), the
    console handler still exists but only passes through log records that
    carry ``extra={"display": True}``.  Operator-facing events (a goal
    finished, autonomy was downgraded, a provider went offline) reach the
    terminal while the per-cycle chatter stays in the log file.

    **File rotation**: ``file_mode="single"`` uses a
    ``RotatingFileHandler`` with configurable max size and backup count.
    ``file_mode="per_run"`` (default) creates a timestamped file for each
    process.

Usage:
    from agentloop.logging_config import configure_logging, log_display

    configure_logging(app_name="agentloop")

    import logging
    logger = logging.getLogger("agentloop.autonomous.scheduler")
    log_display(logger, logging.INFO, "Goal %s completed", goal_id)
"""

import logging
import os
import sys
import tomllib
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Default logging configuration
# ---------------------------------------------------------------------------

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(message)s",
    "file_enabled": True,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/agentloop/logs",
    "file_mode": "per_run",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,  # 10 MB
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "agentloop": "INFO",
        "asyncio": "WARNING",
        "aiosqlite": "WARNING",
    },
}


def _resolve_level(value: str | int, default: int) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper())
    return level if isinstance(level, int) else default


# ---------------------------------------------------------------------------
# DisplayFilter
# ---------------------------------------------------------------------------


class DisplayFilter(logging.Filter):
    """Controls which log records pass through to the console handler.

    Behavior matrix::

        +------------------------+--------------+-----------------+
        | console_global         | display=True | display=False/  |
        |                        |              | absent          |
        +------------------------+--------------+-----------------+
        | True  (verbose)        | PASS         | PASS            |
        | False (default/quiet)  | PASS*        | BLOCK           |
        +------------------------+--------------+-----------------+

        * subject to display_min_level
    """

    def __init__(
        self,
        console_globally_enabled: bool = False,
        display_min_level: int = logging.INFO,
    ) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine if the record should pass to console."""
        if self.console_globally_enabled:
            return True

        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level

        return False


# ---------------------------------------------------------------------------
# UnifiedLoggingManager
# ---------------------------------------------------------------------------


class UnifiedLoggingManager:
    """
    Singleton manager for the process-wide logging setup.

    Ensures logging is only configured once and provides methods
    for runtime adjustment of log levels.
    """

    _instance: Optional["UnifiedLoggingManager"] = None
    _configured: bool = False
    _log_file_path: Path | None = None
    _console_handler: logging.Handler | None = None
    _file_handler: logging.Handler | None = None
    _display_filter: DisplayFilter | None = None

    def __new__(cls) -> "UnifiedLoggingManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_instance(cls) -> "UnifiedLoggingManager":
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        """Check if logging has been configured."""
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Path | None:
        """Get the current log file path."""
        return cls._log_file_path

    def configure(
        self,
        app_name: str = "agentloop",
        config: dict[str, Any] | None = None,
        config_file_path: str | Path | None = None,
        force_reconfigure: bool = False,
    ) -> Path | None:
        """
        Configure logging for the process.

        Args:
            app_name: Name of the application (used in log filename)
            config: Logging section as a dictionary
            config_file_path: TOML file whose ``[logging]`` table is used
                when ``config`` is not given
            force_reconfigure: If True, reconfigure even if already configured

        Returns:
            Path to the log file, or None when file logging is off
        """
        if self._configured and not force_reconfigure:
            return self._log_file_path

        log_config = self._load_config(config, config_file_path)

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        root_logger.setLevel(logging.DEBUG)

        console_globally_enabled = bool(log_config.get("console_enabled", False))
        display_min_level = _resolve_level(
            log_config.get("display_min_level", "INFO"), logging.INFO
        )
        self._display_filter = DisplayFilter(
            console_globally_enabled=console_globally_enabled,
            display_min_level=display_min_level,
        )

        self._console_handler = self._create_console_handler(log_config)
        if not console_globally_enabled:
            # Filter is the only gate while the console is "off".
            self._console_handler.setLevel(logging.DEBUG)
        self._console_handler.addFilter(self._display_filter)
        root_logger.addHandler(self._console_handler)

        self._file_handler = None
        self._log_file_path = None
        if log_config.get("file_enabled", True):
            self._file_handler, self._log_file_path = self._create_file_handler(
                log_config, app_name
            )
            if self._file_handler:
                root_logger.addHandler(self._file_handler)

        components = log_config.get("components", DEFAULT_LOGGING_CONFIG["components"])
        for component_name, level_str in components.items():
            logging.getLogger(component_name).setLevel(
                _resolve_level(level_str, logging.INFO)
            )

        UnifiedLoggingManager._configured = True
        UnifiedLoggingManager._log_file_path = self._log_file_path

        if self._log_file_path:
            logging.getLogger("agentloop.logging_config").debug(
                "Logging configured. Log file: %s", self._log_file_path
            )

        return self._log_file_path

    def _load_config(
        self, config: dict[str, Any] | None, config_file_path: str | Path | None
    ) -> dict[str, Any]:
        """Merge the given logging section over the defaults."""
        if config is not None:
            return {**DEFAULT_LOGGING_CONFIG, **config}

        if config_file_path is not None:
            path = Path(config_file_path).expanduser()
            try:
                with open(path, "rb") as f:
                    section = tomllib.load(f).get("logging", {})
            except (OSError, tomllib.TOMLDecodeError) as e:
                sys.stderr.write(f"Warning: Cannot read logging config {path}: {e}\n")
                section = {}
            return {**DEFAULT_LOGGING_CONFIG, **section}

        return DEFAULT_LOGGING_CONFIG.copy()

    def _create_console_handler(self, config: dict[str, Any]) -> logging.Handler:
        """Create and configure the console handler."""
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(_resolve_level(config.get("console_level", "WARNING"), logging.WARNING))
        fmt = config.get("console_format", DEFAULT_LOGGING_CONFIG["console_format"])
        handler.setFormatter(logging.Formatter(fmt))
        return handler

    def _create_file_handler(
        self, config: dict[str, Any], app_name: str
    ) -> tuple[logging.Handler | None, Path | None]:
        """Create the file handler in ``per_run`` or ``single`` (rotating) mode."""
        dir_str = config.get("file_directory", DEFAULT_LOGGING_CONFIG["file_directory"])
        log_dir = Path(os.path.expandvars(os.path.expanduser(str(dir_str))))

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        if config.get("file_mode", "per_run") == "single":
            name_pattern = config.get("file_single_name", "{app}.log")
            try:
                filename = name_pattern.format(app=app_name)
            except (KeyError, ValueError):
                filename = f"{app_name}.log"
            log_file_path = log_dir / filename
            try:
                handler: logging.Handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=config.get("rotation_max_bytes", 10 * 1024 * 1024),
                    backupCount=config.get("rotation_backup_count", 5),
                    encoding="utf-8",
                )
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None
        else:
            pattern = config.get("file_name_pattern", DEFAULT_LOGGING_CONFIG["file_name_pattern"])
            timestamp = datetime.now()
            try:
                filename = pattern.format(app=app_name, timestamp=timestamp)
            except (KeyError, ValueError):
                filename = f"{app_name}_{timestamp.strftime('%Y%m%d_%H%M%S')}.log"
            log_file_path = log_dir / filename
            try:
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None

        handler.setLevel(_resolve_level(config.get("file_level", "DEBUG"), logging.DEBUG))
        fmt = config.get("file_format", DEFAULT_LOGGING_CONFIG["file_format"])
        handler.setFormatter(logging.Formatter(fmt))
        return handler, log_file_path

    def set_console_level(self, level: str | int) -> None:
        """Change the console handler's log level at runtime."""
        if self._console_handler is not None:
            self._console_handler.setLevel(_resolve_level(level, logging.WARNING))

    def set_component_level(self, component: str, level: str | int) -> None:
        """Change a specific component's log level at runtime."""
        logging.getLogger(component).setLevel(_resolve_level(level, logging.INFO))


# ---------------------------------------------------------------------------
# Public module-level functions
# ---------------------------------------------------------------------------


def configure_logging(
    app_name: str = "agentloop",
    config: dict[str, Any] | None = None,
    config_file_path: str | Path | None = None,
    force_reconfigure: bool = False,
) -> Path | None:
    """
    Configure logging for the application.

    Example:
        configure_logging(
            app_name="agentloop",
            config={"console_enabled": True, "file_enabled": False},
        )
    """
    return UnifiedLoggingManager.get_instance().configure(
        app_name=app_name,
        config=config,
        config_file_path=config_file_path,
        force_reconfigure=force_reconfigure,
    )


def log_display(
    logger: logging.Logger,
    level: int,
    msg: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Log a message that also appears on console even in silent mode.

    Sets ``extra={"display": True}`` (merged with any caller ``extra``).
    ``display_min_level`` still applies.
    """
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Path | None:
    """Get the current log file path."""
    return UnifiedLoggingManager.get_log_file_path()


def set_console_level(level: str | int) -> None:
    """Change console log level at runtime."""
    UnifiedLoggingManager.get_instance().set_console_level(level)


def set_component_level(component: str, level: str | int) -> None:
    """Change a specific component's log level at runtime."""
    UnifiedLoggingManager.get_instance().set_component_level(component, level)
