"""Interactive collaborators used by the restore command."""

from __future__ import annotations

import hashlib
import hmac
from typing import Callable

import structlog
from rich.prompt import Confirm, Prompt

logger = structlog.get_logger(__name__)


def hash_password(password: str) -> str:
    """Return the hex SHA-256 digest stored in ``BACKUP_RESTORE_PASSWORD_SHA256``."""

    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _prompt_password() -> str:
    return Prompt.ask("Restore password", password=True)


class PasswordAuthenticator:
    """Checks a supplied password against a configured SHA-256 digest.

    Without a configured digest every attempt is rejected, so a restore cannot
    run on a deployment that never set a restore password.
    """

    def __init__(
        self,
        expected_sha256: str | None,
        supply: Callable[[], str] = _prompt_password,
    ) -> None:
        self._expected = (expected_sha256 or "").strip().lower()
        self._supply = supply

    def check(self, password: str | None) -> bool:
        if not self._expected:
            logger.warning("restore_password_not_configured")
            return False
        candidate = hash_password(password or "")
        return hmac.compare_digest(candidate, self._expected)

    def verify(self) -> bool:
        if not self._expected:
            logger.warning("restore_password_not_configured")
            return False
        return self.check(self._supply())


class ConsoleConfirmer:
    """Yes/no questions on the terminal."""

    def __init__(self, default: bool = False) -> None:
        self.default = default

    def ask_yes_no(self, prompt: str) -> bool:
        return Confirm.ask(prompt, default=self.default)
