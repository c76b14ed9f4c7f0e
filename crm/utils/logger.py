"""
Centralized logging configuration for the follow-up CRM.

Provides a single rotating log file with daily rotation and 30-day retention.
Logs all key follow-up events: call registered, rescheduled, paused, resumed,
due notification, client suspended.
"""

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


def setup_logger(
    name: str = None,
    log_level: str = 'INFO',
    log_file: str = 'logs/application.log'
) -> logging.Logger:
    """
    Configure and return a logger with rotating file handler.

    Creates a logger that writes to a single log file with daily rotation
    and 30-day retention. Also outputs to console for development.

    Args:
        name: Logger name (uses root logger if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file

    Returns:
        Configured logger instance
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)

    # Only configure if not already configured
    if logger.handlers:
        return logger

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = TimedRotatingFileHandler(
        filename=log_file,
        when='midnight',
        interval=1,
        backupCount=30,
        encoding='utf-8'
    )
    file_handler.suffix = "%Y-%m-%d"

    # logs/application.log.2025-11-16 -> logs/application-2025-11-16.log
    def namer(default_name):
        base_filename = log_file.replace('.log', '')
        date_part = default_name.split('.')[-1]
        return f"{base_filename}-{date_part}.log"

    file_handler.namer = namer
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.propagate = False

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    If the logger hasn't been configured yet, it will be set up with
    default settings from environment variables.

    Args:
        name: Logger name (uses root logger if None)

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        log_level = os.getenv('LOG_LEVEL', 'INFO')
        log_file = os.getenv('LOG_FILE', 'logs/application.log')
        return setup_logger(name, log_level, log_file)

    return logger


# Default application logger for business events
app_logger = setup_logger(
    'crm',
    os.getenv('LOG_LEVEL', 'INFO'),
    os.getenv('LOG_FILE', 'logs/application.log')
)


def log_call_registered(client_id: str, next_followup_at: str):
    """
    Log when a call is registered and the countdown restarts.

    Args:
        client_id: Client identifier
        next_followup_at: ISO timestamp of the new follow-up
    """
    app_logger.info(
        f"Call registered | client_id={client_id} | "
        f"next_followup_at={next_followup_at}"
    )


def log_followup_rescheduled(client_id: str, next_followup_at: str, explicit: bool):
    """
    Log when a follow-up is rescheduled.

    Args:
        client_id: Client identifier
        next_followup_at: ISO timestamp of the new follow-up
        explicit: Whether the user supplied the date (False = default offset)
    """
    app_logger.info(
        f"Follow-up rescheduled | client_id={client_id} | "
        f"next_followup_at={next_followup_at} | explicit={explicit}"
    )


def log_followup_paused(client_id: str, paused_time_left_ms: int):
    """Log when a countdown is paused."""
    app_logger.info(
        f"Follow-up paused | client_id={client_id} | "
        f"paused_time_left_ms={paused_time_left_ms}"
    )


def log_followup_resumed(client_id: str, next_followup_at: str):
    """Log when a paused countdown resumes."""
    app_logger.info(
        f"Follow-up resumed | client_id={client_id} | "
        f"next_followup_at={next_followup_at}"
    )


def log_followup_deleted(client_id: str):
    app_logger.info(f"Follow-up deleted | client_id={client_id}")


def log_followup_due(client_id: str, company_name: str, delivered: bool):
    """
    Log when a due follow-up notification is emitted.

    Args:
        client_id: Client identifier
        company_name: Client display name
        delivered: Whether the notifier reported successful delivery
    """
    app_logger.info(
        f"Follow-up due | client_id={client_id} | "
        f"company={company_name} | delivered={delivered}"
    )


def log_client_suspended(client_id: str, overdue_hours: float):
    """
    Log when a client is automatically suspended.

    Args:
        client_id: Client identifier
        overdue_hours: Hours elapsed since the follow-up was due
    """
    app_logger.info(
        f"Client suspended | client_id={client_id} | "
        f"overdue_hours={overdue_hours:.1f}"
    )


def log_notification_failed(client_id: str, error: str):
    app_logger.warning(
        f"Notification failed | client_id={client_id} | error={error}"
    )


def log_storage_error(key: str, error: str, context: Optional[str] = None):
    """
    Log a failed persistence operation.

    Args:
        key: Storage key involved
        error: Error message
        context: Additional context about the error
    """
    context_str = f" | context={context}" if context else ""
    app_logger.error(
        f"Storage error | key={key} | error={error}{context_str}"
    )
