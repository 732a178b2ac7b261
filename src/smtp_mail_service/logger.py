# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the SMTP mail service.

Handlers, level and format are configured once with ``logging.basicConfig()``
in the entry points (``server.py`` and ``cli.py``); modules only ask for a
named logger.

Example:
    Typical usage in a module::

        from smtp_mail_service.logger import get_logger

        logger = get_logger("Transport")
        logger.info("Connected to %s", host)
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "SmtpMailService") -> logging.Logger:
    """Return the standard library logger bound to ``name``.

    Args:
        name: The logger name. Defaults to "SmtpMailService".
    """
    return logging.getLogger(name)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for an entry point.

    Unknown level names fall back to INFO. ``force=True`` replaces handlers
    installed by a previous call so reloads never duplicate output.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        force=True,
    )
