"""Error message sanitization for API responses.

Errors from the remote API or the database can carry credentials
(``authKey`` values, connection strings). Messages returned to HTTP
clients go through ``sanitize_error_message``; the raw message is only
ever logged server-side.

Usage:
    from src.syncio.api.error_sanitizer import sanitize_error_message

    try:
        ...
    except SyncioError as e:
        logger.error(f"Sync failed: {e}")
        raise HTTPException(status_code=502, detail=sanitize_error_message(e.message))
"""

import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class SanitizationResult:
    """Result of sanitizing one message."""

    sanitized_message: str
    redaction_count: int

    @property
    def was_sanitized(self) -> bool:
        return self.redaction_count > 0


class ErrorSanitizer:
    """Redacts secrets from error messages.

    Order matters: specific patterns come before generic ones.
    """

    DEFAULT_PATTERNS: list[tuple[str, str]] = [
        # Connection strings
        (r'postgres(ql)?://[^\s]+', '[DATABASE_URL]'),

        # Stremio credentials, in JSON bodies or query strings
        (r'"?auth_?key"?\s*[=:]\s*"?[^\s",;}]+"?', 'authKey=[REDACTED]'),
        (r'x-api-key[=:\s]+[^\s,;]+', 'X-API-Key: [REDACTED]'),
        (r'api[-_]?key[=:\s]+[^\s,;]+', 'api_key=[REDACTED]'),
        (r'bearer\s+[A-Za-z0-9_\-\.]+', 'Bearer [REDACTED]'),
        (r'password[=:\s]+[^\s,;]+', 'password=[REDACTED]'),

        # Environment variables that hold secrets
        (r'\b(DATABASE_URL|API_KEY|ENCRYPTION_KEY)\b(?=[=:\s])', '[ENV_VAR]'),

        # Stack traces and local paths
        (r'Traceback \(most recent call last\):[\s\S]*?(?=\n\n|\n[A-Z]|\Z)', '[STACK_TRACE]'),
        (r'/(?:home|root|usr|var|etc|opt|srv)/[^\s,;]+', '[FILE_PATH]'),

        # Opaque tokens
        (r'\b[0-9a-fA-F]{32,}\b', '[HEX_STRING]'),
        (r'\b[A-Za-z0-9+/]{40,}={0,2}', '[TOKEN_REDACTED]'),
    ]

    def __init__(
        self,
        patterns: Optional[list[tuple[str, str]]] = None,
        max_message_length: int = 500,
    ):
        self.patterns = patterns or self.DEFAULT_PATTERNS
        self.max_message_length = max_message_length
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), replacement)
            for pattern, replacement in self.patterns
        ]

    def sanitize(self, message: str, error_type: Optional[str] = None) -> SanitizationResult:
        """Sanitize a message for client exposure.

        Args:
            message: Raw error message
            error_type: Optional prefix such as "Remote error"
        """
        if not message:
            return SanitizationResult(sanitized_message="An error occurred", redaction_count=0)

        sanitized = message
        redactions = 0
        for pattern, replacement in self._compiled_patterns:
            sanitized, count = pattern.subn(replacement, sanitized)
            redactions += count

        if len(sanitized) > self.max_message_length:
            sanitized = sanitized[: self.max_message_length - 14] + "... [TRUNCATED]"

        if error_type:
            sanitized = f"{error_type}: {sanitized}"

        return SanitizationResult(sanitized_message=sanitized, redaction_count=redactions)

    def is_safe(self, message: str) -> bool:
        """True if no pattern matches ``message``."""
        return not any(p.search(message) for p, _ in self._compiled_patterns)


_sanitizer: Optional[ErrorSanitizer] = None


def get_sanitizer() -> ErrorSanitizer:
    """Shared sanitizer instance."""
    global _sanitizer
    if _sanitizer is None:
        _sanitizer = ErrorSanitizer()
    return _sanitizer


def sanitize_error_message(message: str, error_type: Optional[str] = None) -> str:
    """Sanitize ``message`` with the shared sanitizer and return the text."""
    return get_sanitizer().sanitize(message, error_type).sanitized_message
