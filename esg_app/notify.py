"""User-facing notifications, delivered through Flask's flash queue."""

import logging

from flask import flash

logger = logging.getLogger(__name__)


def success(message):
    logger.info(message)
    flash(message, "success")


def warning(message):
    logger.info(message)
    flash(message, "warning")


def error(message):
    logger.warning(message)
    flash(message, "danger")
