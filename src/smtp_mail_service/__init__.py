# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""HTML mail dispatch service over SMTP with durable delivery history.

This package provides:

- Stored SMTP server profiles with encrypted passwords
- HTML messages with attachments, optionally pre-filled from templates
- Delivery over plain SMTP, implicit TLS or STARTTLS
- One delivery record per send attempt, with pagination and statistics
- FastAPI REST API and a click command line

Example:
    Basic usage with the FastAPI application::

        from smtp_mail_service.core import MailService
        from smtp_mail_service.api import create_app

        service = MailService(db_path="./data/smtp-mail.db", master_secret="s3cret")
        app = create_app(service)

Authors:
    Softwell S.r.l.
"""
