"""
Structured logging built on structlog.
Provides configurable output formats plus a cycle-scoped logger for the snapshot scheduler.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union
import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Add call-site parameters to every event
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


class CycleLogger:
    """
    Logger for snapshot cycles with context management.
    """

    def __init__(self, name: str = "snapshot_cycle"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'CycleLogger':
        """
        Bind context variables to the logger.

        Args:
            **kwargs: Context variables to bind

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    def log_cycle_start(self, trigger: str) -> None:
        self.logger.info("Snapshot cycle started", trigger=trigger, **self.context)

    def log_cycle_skipped(self, trigger: str) -> None:
        self.logger.warning(
            "Snapshot cycle already running, trigger collapsed",
            trigger=trigger,
            **self.context
        )

    def log_stage(self, stage: str) -> None:
        self.logger.debug("Snapshot cycle stage", stage=stage, **self.context)

    def log_stage_failed(self, stage: str, error: str) -> None:
        self.logger.error(
            "Snapshot cycle aborted",
            stage=stage,
            error=error,
            **self.context
        )

    def log_cycle_complete(
        self,
        changes: int,
        delivered: int,
        failed_deliveries: int,
        rotated: int,
        duration_seconds: float
    ) -> None:
        self.logger.info(
            "Snapshot cycle completed",
            changes=changes,
            delivered=delivered,
            failed_deliveries=failed_deliveries,
            rotated=rotated,
            duration_seconds=duration_seconds,
            **self.context
        )

    def log_delivery(self, recipient: str, success: bool, error: Optional[str] = None) -> None:
        """Log a single notification delivery."""
        level = "debug" if success else "warning"
        getattr(self.logger, level)(
            "Notification delivery",
            recipient=recipient,
            success=success,
            error=error,
            **self.context
        )
