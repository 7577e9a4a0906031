"""Password strength and reuse rules."""

import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

SYMBOLS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"

# Rejected regardless of the other rules (case-insensitive exact match)
COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password123",
        "12345678",
        "qwerty123",
        "abc123456",
        "password1",
        "admin123",
        "letmein",
        "welcome123",
        "123456789",
        "password!1",
        "p@ssw0rd",
        "p@ssword1",
        "welcome1!",
        "qwerty123!",
        "admin@123",
    }
)

_SYMBOL_RE = re.compile("[" + re.escape(SYMBOLS) + "]")


@dataclass
class PasswordCheck:
    valid: bool
    errors: list[str] = field(default_factory=list)


class PasswordPolicy:
    """Validates new passwords.

    Args:
        min_length: Minimum number of characters.
    """

    def __init__(self, min_length: int = 8) -> None:
        self.min_length = min_length

    def validate_strength(self, password) -> PasswordCheck:
        """Check ``password`` against every rule and report all violations."""
        if not password or not isinstance(password, str):
            return PasswordCheck(valid=False, errors=["Password is required"])

        errors = []
        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters")
        if not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")
        if not re.search(r"\d", password):
            errors.append("Password must contain at least one number")
        if not _SYMBOL_RE.search(password):
            errors.append("Password must contain at least one special character")
        if password.lower() in COMMON_PASSWORDS:
            errors.append("Password is too common, please choose a stronger password")

        return PasswordCheck(valid=not errors, errors=errors)

    async def is_reused(
        self,
        candidate: str,
        previous_hashes: Sequence[str],
        verify: Callable[[str, str], Awaitable[bool]],
    ) -> bool:
        """Return True if ``candidate`` matches any of ``previous_hashes``.

        Hashes are compared one at a time and the check stops at the first
        match.
        """
        for password_hash in previous_hashes or ():
            if await verify(candidate, password_hash):
                return True
        return False
