import logging
import secrets
import string
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(number: int) -> str:
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


class UserCodeGenerator:
    """
    Generates short participant codes: a fixed prefix plus a random upper-case hex suffix.

    Each candidate is checked against the store through ``exists``. Collisions are retried
    up to ``max_attempts`` times; when every attempt collides the suffix is derived from the
    current timestamp so generation always terminates.
    """

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        prefix: str,
        suffix_length: int = 6,
        max_attempts: int = 20,
        clock: Optional[Callable[[], float]] = None,
    ):
        if suffix_length < 1:
            raise ValueError("suffix_length must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self._exists = exists
        self.prefix = prefix
        self.suffix_length = suffix_length
        self.max_attempts = max_attempts
        self._clock = clock or time.time
        self.last_attempts = 0
        self.last_used_fallback = False

    def candidate(self) -> str:
        suffix = secrets.token_hex((self.suffix_length + 1) // 2)[: self.suffix_length]
        return f"{self.prefix}{suffix.upper()}"

    def fallback(self) -> str:
        stamp = _to_base36(int(self._clock() * 1000))
        return f"{self.prefix}{stamp[-self.suffix_length:].rjust(self.suffix_length, '0')}"

    async def generate(self) -> str:
        self.last_used_fallback = False
        for attempt in range(1, self.max_attempts + 1):
            self.last_attempts = attempt
            code = self.candidate()
            if not await self._exists(code):
                return code
            logger.warning("User code collision detected on attempt %d. Regenerating...", attempt)

        code = self.fallback()
        self.last_used_fallback = True
        logger.error(
            "Failed to generate a unique user code after %d attempts. Using fallback: %s",
            self.max_attempts,
            code,
        )
        return code
