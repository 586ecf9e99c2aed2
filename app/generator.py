"""Short code generation and alias validation."""

import hashlib
import logging
import re
import secrets
import string
import time

from config import SHORT_CODE_LENGTH, SHORT_CODE_MAX_LENGTH
from app.exceptions import AliasConflictError, CapacityExhaustedError, ValidationError

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
BASE = len(ALPHABET)

MAX_ATTEMPTS = 10
MAX_READABLE_ATTEMPTS = 100
MIN_CODE_LENGTH = 3
MAX_CODE_LENGTH = 64
SUFFIX_SEPARATOR = "-"

CODE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

# Route names the redirect catch-all must never shadow
RESERVED_WORDS = frozenset(
    {
        "admin", "api", "dashboard", "login", "logout", "register",
        "profile", "settings", "help", "about", "contact", "privacy",
        "terms", "shorten", "qr", "preview", "stats", "link",
        "docs", "redoc", "health",
    }
)

ADJECTIVES = ["quick", "smart", "fast", "bold", "cool", "wise", "neat", "safe", "sure", "true"]
NOUNS = ["link", "url", "web", "site", "path", "route", "gate", "door", "way", "key"]


def random_code(length: int) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def with_suffix(base_code: str, suffix: int, length: int) -> str:
    """Append ``-suffix`` to ``base_code``, cutting the base so the result fits ``length``."""
    tail = f"{SUFFIX_SEPARATOR}{suffix}"
    max_base_length = max(length - len(tail), 0)
    return base_code[:max_base_length] + tail


def base62_encode(number: int) -> str:
    if number == 0:
        return ALPHABET[0]
    digits = []
    while number > 0:
        number, remainder = divmod(number, BASE)
        digits.append(ALPHABET[remainder])
    return "".join(reversed(digits))


def is_valid_short_code(code: str) -> bool:
    if not isinstance(code, str):
        return False
    if len(code) < MIN_CODE_LENGTH or len(code) > MAX_CODE_LENGTH:
        return False
    if not CODE_PATTERN.match(code):
        return False
    return code.lower() not in RESERVED_WORDS


def normalize_alias(alias: str) -> str:
    """Lowercase ``alias`` and squash anything outside the code charset into dashes."""
    alias = alias.lower()
    alias = re.sub(r"[^a-z0-9_-]", "-", alias)
    alias = re.sub(r"-+", "-", alias)
    alias = alias.strip("-")
    if len(alias) < MIN_CODE_LENGTH:
        raise ValidationError(f"Alias must be at least {MIN_CODE_LENGTH} characters long")
    return alias[:MAX_CODE_LENGTH]


class CodeGenerator:
    def __init__(self, store, max_length: int = SHORT_CODE_MAX_LENGTH):
        self.store = store
        self.max_length = max_length

    async def _is_free(self, code: str) -> bool:
        # reserved words would be shadowed by fixed routes
        return is_valid_short_code(code) and not await self.store.code_exists(code)

    async def generate(self, length: int = SHORT_CODE_LENGTH) -> str:
        """Return a code that is free in the store at the time of the call.

        Each round draws a random code and, if taken, one suffixed variant
        (``abc-1``, ``abc-2``, ...) cut down to the same length. After
        ``MAX_ATTEMPTS`` rounds the length grows by one, up to ``max_length``.

        Raises:
            CapacityExhaustedError: no free code up to ``max_length``.
        """
        if length < MIN_CODE_LENGTH:
            raise ValidationError(f"Code length must be at least {MIN_CODE_LENGTH}")

        for current_length in range(length, self.max_length + 1):
            for attempt in range(1, MAX_ATTEMPTS + 1):
                code = random_code(current_length)
                if await self._is_free(code):
                    return code

                code = with_suffix(code, attempt, current_length)
                if await self._is_free(code):
                    return code

            logger.warning(f"Code space crowded at length {current_length}, growing to {current_length + 1}")

        raise CapacityExhaustedError(f"No free short code up to length {self.max_length}")

    async def generate_from_url(self, url: str, length: int = SHORT_CODE_LENGTH) -> str:
        """Hash ``url`` with a time and random salt and keep ``length`` base62 characters."""
        salt = f"{time.time_ns()}{secrets.token_hex(4)}"
        digest = hashlib.md5(f"{url}{salt}".encode()).hexdigest()
        code = base62_encode(int(digest, 16))[:length]
        return await self.store.next_available_code(code)

    async def generate_readable(self) -> str:
        for _ in range(MAX_READABLE_ATTEMPTS):
            code = f"{secrets.choice(ADJECTIVES)}-{secrets.choice(NOUNS)}-{100 + secrets.randbelow(900)}"
            if not await self.store.code_exists(code):
                return code
        raise CapacityExhaustedError("No free readable code left")

    async def generate_batch(self, count: int, length: int = SHORT_CODE_LENGTH) -> list[str]:
        codes: list[str] = []
        while len(codes) < count:
            code = await self.generate(length)
            if code not in codes:
                codes.append(code)
        return codes

    async def validate_custom_alias(self, alias: str) -> str:
        if not is_valid_short_code(alias):
            raise ValidationError(
                f"Alias {alias!r} must be {MIN_CODE_LENGTH}-{MAX_CODE_LENGTH} characters of "
                "letters, digits, '_' or '-' and must not be a reserved word"
            )
        if await self.store.code_exists(alias):
            raise AliasConflictError(f"Alias {alias!r} is already taken")
        return alias
