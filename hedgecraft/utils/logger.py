"""
Structured JSON logging configuration using structlog.
"""
import logging
import sys
from typing import Any

import structlog
from structlog.types import FilteringBoundLogger

from hedgecraft.config.settings import get_settings


def configure_logging() -> None:
    """Configure structured logging for the engine."""
    settings = get_settings()
    
    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )
    
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_position_event(
    logger: FilteringBoundLogger,
    event: str,
    position_id: str,
    owner: str,
    base_asset: str,
    quote_asset: str,
    **extra: Any,
) -> None:
    """Log composite position lifecycle events."""
    logger.info(
        f"position_{event}",
        position_id=position_id,
        owner=owner,
        base_asset=base_asset,
        quote_asset=quote_asset,
        **extra,
    )


def log_hedge_event(
    logger: FilteringBoundLogger,
    event: str,
    position_id: str,
    collateral_asset: str,
    shorted_asset: str,
    **extra: Any,
) -> None:
    """Log hedge leg lifecycle events."""
    logger.info(
        f"hedge_{event}",
        position_id=position_id,
        collateral_asset=collateral_asset,
        shorted_asset=shorted_asset,
        **extra,
    )


def log_risk_event(
    logger: FilteringBoundLogger,
    risk_type: str,
    severity: str,  # "warning", "critical", "emergency"
    message: str,
    **extra: Any,
) -> None:
    """Log risk-related events with severity."""
    log_func = {
        "warning": logger.warning,
        "critical": logger.error,
        "emergency": logger.critical,
    }.get(severity, logger.warning)
    
    log_func(
        "risk_event",
        risk_type=risk_type,
        severity=severity,
        message=message,
        **extra,
    )
