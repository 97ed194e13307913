from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable

from default_config.src.metrics import METRICS

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()-_=+[]{}<>?,.:;"
ALL_CHARACTERS = LOWERCASE + UPPERCASE + DIGITS + SYMBOLS
REQUIRED_CLASSES = (LOWERCASE, UPPERCASE, DIGITS, SYMBOLS)
MIN_PASSWORD_LENGTH = len(REQUIRED_CLASSES)


class AdminPasswordGenerator:
    """Generates passwords that satisfy the ecosystem password policy.

    Every password contains at least one lowercase letter, one uppercase
    letter, one digit and one symbol from :data:`SYMBOLS`.  Characters are
    drawn with ``secrets.randbelow``, which rejects out-of-range samples
    instead of reducing modulo the charset size.

    If the operating system's random source fails, the affected character
    falls back to the first character of its class.  The password stays
    policy compliant but loses entropy, so every fallback is logged and
    counted.
    """

    def __init__(
        self,
        randbelow: Callable[[int], int] = secrets.randbelow,
        logger: logging.Logger | None = None,
    ) -> None:
        self.randbelow = randbelow
        self.logger = logger or logging.getLogger(__name__)

    def _random_index(self, upper: int) -> int | None:
        try:
            return self.randbelow(upper)
        except (OSError, NotImplementedError):
            METRICS.password_rng_fallbacks_total.inc()
            self.logger.warning(
                "Secure random source unavailable; generated password has reduced entropy"
            )
            return None

    def _pick(self, charset: str) -> str:
        index = self._random_index(len(charset))
        if index is None:
            return charset[0]
        return charset[index]

    def generate_password(self, length: int) -> str:
        if length < MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"password length must be at least {MIN_PASSWORD_LENGTH}, got: {length}"
            )

        password = [self._pick(charset) for charset in REQUIRED_CLASSES]
        while len(password) < length:
            password.append(self._pick(ALL_CHARACTERS))

        # Fisher-Yates shuffle over the whole password.
        for i in range(len(password) - 1, 0, -1):
            j = self._random_index(i + 1)
            if j is None:
                continue
            password[i], password[j] = password[j], password[i]

        return "".join(password)
