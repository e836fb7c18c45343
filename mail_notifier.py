#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Outcome notifications by mail through ssmtp.

Exactly one message is sent per pass: success, error or interrupted. The
body templates accept the placeholders {BACKUP_DATE}, {RUNTIME_MIN},
{RUNTIME_SEC} and {ERROR_DETAILS}.
"""

# --- STANDARD LIBRARY IMPORTS ---
import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

# --- THIRD-PARTY LIBRARY IMPORTS ---
import sh

# --- LOCAL APPLICATION IMPORTS ---
from backup_config import MailSettings
from backup_errors import ConfigError

SSMTP_CONFIG_FILE = "/etc/ssmtp/ssmtp.conf"
REQUIRED_SSMTP_PARAMS = ("mailhub", "AuthUser", "AuthPass")

SSMTP_HELP = """Edit /etc/ssmtp/ssmtp.conf and set the following options:
mailhub=your-mailserver.tld:587
hostname=your-desired-hostname
FromLineOverride=YES
UseSTARTTLS=YES
UseTLS=NO
AuthUser=your-username@your-domain.tld
AuthPass=your-email-account-password"""


class NotificationVariant(Enum):
    SUCCESS = "success"
    ERROR = "error"
    INTERRUPTED = "interrupted"


@dataclass
class NotificationPayload:
    """What a notification reports about one pass."""

    variant: NotificationVariant
    backup_date: str
    runtime_minutes: int
    runtime_seconds: int
    error_details: Optional[str] = None


class MailNotifier:
    """Renders the configured templates and hands the message to ssmtp."""

    def __init__(self, settings: MailSettings, ssmtp=None, config_file: str = SSMTP_CONFIG_FILE):
        self.settings = settings
        self._ssmtp = ssmtp
        self.config_file = Path(config_file)

    @property
    def ssmtp(self):
        if self._ssmtp is None:
            self._ssmtp = sh.Command("ssmtp")
        return self._ssmtp

    def check_configuration(self) -> None:
        """
        Verifies that ssmtp is installed and configured.

        Raises:
            ConfigError: Listing what is missing.
        """
        logging.info("Checking SSMTP configuration...")
        if self._ssmtp is None and shutil.which("ssmtp") is None:
            raise ConfigError(
                "ssmtp is not installed! Install it with: sudo apt update && sudo apt install ssmtp"
            )
        if not self.config_file.is_file():
            raise ConfigError(
                f"SSMTP configuration file not found: {self.config_file}\n{SSMTP_HELP}"
            )
        if not os.access(self.config_file, os.R_OK):
            raise ConfigError(
                f"SSMTP configuration file is not readable: {self.config_file}\n"
                f"Make sure the file has the correct permissions: sudo chmod 644 {self.config_file}"
            )

        present = set()
        for line in self.config_file.read_text().splitlines():
            key, sep, _value = line.partition("=")
            if sep:
                present.add(key.strip())
        missing: List[str] = [param for param in REQUIRED_SSMTP_PARAMS if param not in present]
        if missing:
            raise ConfigError(
                f"Missing SSMTP configuration parameters in {self.config_file}: "
                f"{', '.join(missing)}\n{SSMTP_HELP}"
            )
        logging.info("✓ SSMTP is installed and configured")

    def render_body(self, payload: NotificationPayload) -> str:
        body = self.settings.bodies[payload.variant.value]
        replacements = {
            "{BACKUP_DATE}": payload.backup_date,
            "{RUNTIME_MIN}": str(payload.runtime_minutes),
            "{RUNTIME_SEC}": str(payload.runtime_seconds),
            "{ERROR_DETAILS}": payload.error_details or "",
        }
        for placeholder, value in replacements.items():
            body = body.replace(placeholder, value)
        return body

    def render(self, payload: NotificationPayload) -> str:
        """Returns the full message, headers included, as ssmtp -t expects it."""
        subject = self.settings.subjects[payload.variant.value]
        return (
            f"From: {self.settings.mail_from}\n"
            f"Subject: {subject}\n"
            f"To: {self.settings.mail_to}\n\n"
            f"{self.render_body(payload)}\n"
        )

    def notify(self, payload: NotificationPayload) -> bool:
        """Sends the message. Delivery problems are logged, never raised."""
        message = self.render(payload)
        try:
            self.ssmtp("-t", _in=message)
        except (sh.ErrorReturnCode, sh.CommandNotFound) as e:
            logging.error(f"Could not send {payload.variant.value} email: {e}")
            return False
        logging.info(f"{payload.variant.value.capitalize()} email sent")
        return True
