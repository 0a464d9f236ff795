"""Structured logging configuration for the migration tool."""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from dirmigrator.config import LoggingConfig


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class MigrationLogger:
    """Centralized logging manager for the migration tool."""

    _instance: Optional["MigrationLogger"] = None
    _logger: Optional[structlog.BoundLogger] = None

    def __new__(cls) -> "MigrationLogger":
        """Ensure singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Initialize the logger."""
        if self._logger is None:
            self._logger = structlog.get_logger()

    def configure(self, config: LoggingConfig) -> None:
        """Configure structured logging based on configuration.

        Args:
            config: Logging configuration
        """
        processors = [
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]

        if config.format == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer())

        structlog.configure(
            processors=processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        level = getattr(logging, config.level.value)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        if config.console:
            if config.format == "text":
                console_handler: logging.Handler = RichHandler(
                    console=Console(stderr=True),
                    show_time=True,
                    show_path=False,
                    rich_tracebacks=True,
                )
            else:
                console_handler = logging.StreamHandler(sys.stderr)

            console_handler.setLevel(level)
            root_logger.addHandler(console_handler)

        if config.file:
            file_path = Path(config.file)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                filename=str(file_path),
                maxBytes=config.rotation_size,
                backupCount=config.retention_days,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            # structlog renders the message
            file_handler.setFormatter(logging.Formatter("%(message)s"))
            root_logger.addHandler(file_handler)

        self._logger = structlog.get_logger()

    def get_logger(self, name: Optional[str] = None) -> structlog.BoundLogger:
        """Get a logger instance.

        Args:
            name: Optional logger name

        Returns:
            Bound logger instance
        """
        if self._logger is None:
            self._logger = structlog.get_logger()

        if name:
            return self._logger.bind(component=name)
        return self._logger

    def log_migration_start(self, run_id: str, phases: int, config: Dict[str, Any]) -> None:
        """Log migration start event.

        Args:
            run_id: Run identifier
            phases: Number of registered phases
            config: Redacted migration configuration
        """
        self.get_logger().info(
            "migration_started",
            run_id=run_id,
            phases=phases,
            timestamp=_utcnow(),
            config=config,
        )

    def log_migration_complete(
        self,
        run_id: str,
        phase_statuses: Dict[str, str],
        succeeded: bool,
        duration_seconds: float,
    ) -> None:
        """Log migration completion event.

        Args:
            run_id: Run identifier
            phase_statuses: Final status per phase
            succeeded: Whether every phase completed
            duration_seconds: Total migration duration
        """
        self.get_logger().info(
            "migration_completed",
            run_id=run_id,
            phases=phase_statuses,
            succeeded=succeeded,
            duration_seconds=duration_seconds,
            timestamp=_utcnow(),
        )

    def log_object_processed(
        self,
        phase: str,
        key: str,
        status: str,
        duration_ms: float,
        destination_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Log a per-object outcome.

        Args:
            phase: Phase name
            key: Object key
            status: Resulting status
            duration_ms: Processing duration in milliseconds
            destination_id: Destination identifier, if any
            error: Error text if processing failed
        """
        log_data: Dict[str, Any] = {
            "phase": phase,
            "key": key,
            "status": status,
            "duration_ms": duration_ms,
        }
        if destination_id:
            log_data["destination_id"] = destination_id

        if error:
            log_data["error"] = error
            self.get_logger().error("object_failed", **log_data)
        else:
            self.get_logger().info("object_processed", **log_data)

    def log_api_request(
        self,
        method: str,
        endpoint: str,
        status_code: Optional[int] = None,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        """Log API request event.

        Args:
            method: HTTP method
            endpoint: API endpoint
            status_code: Response status code
            duration_ms: Request duration in milliseconds
            error: Error message if request failed
        """
        log_data: Dict[str, Any] = {"method": method, "endpoint": endpoint}

        if status_code:
            log_data["status_code"] = status_code
        if duration_ms:
            log_data["duration_ms"] = duration_ms

        if error:
            log_data["error"] = error
            self.get_logger().warning("api_request_failed", **log_data)
        else:
            self.get_logger().debug("api_request", **log_data)


# Global logger instance
logger = MigrationLogger()


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name/component

    Returns:
        Bound logger instance
    """
    return logger.get_logger(name)
