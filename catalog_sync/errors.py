# catalog_sync/errors.py
# ==========================================================
# Typed errors raised by the WooCommerce client.
# The sync engine switches on these types instead of parsing
# free-text messages.
# ==========================================================
from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional

from catalog_sync.logging_filters import trim_body

# Phrases WooCommerce (and its Turkish locale) uses when a create for the same SKU
# is still in flight. The escaped form shows up when the message arrives inside a
# JSON string that was never decoded.
DEFAULT_CONFLICT_PHRASES = (
    "already",
    "işleniyor",
    "i\\u015fleniyor",
    "processing",
    "claimed",
    "in-progress",
    "zaten",
)

_IMAGE_FAILURE_RE = re.compile(r"image|görsel|media|forbidden|upload", re.IGNORECASE)


class RemoteError(Exception):
    """A failed call against the remote catalog."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.data = data

    @property
    def image_related(self) -> bool:
        return bool(_IMAGE_FAILURE_RE.search(self.message or ""))

    @property
    def code(self) -> Optional[str]:
        if isinstance(self.data, dict):
            return self.data.get("code")
        return None

    @property
    def existing_term_id(self) -> Optional[int]:
        """Id of the already existing term when a category/tag create returned `term_exists`."""
        if self.code != "term_exists":
            return None
        inner = self.data.get("data") if isinstance(self.data, dict) else None
        rid = (inner or {}).get("resource_id") if isinstance(inner, dict) else None
        try:
            return int(rid) if rid is not None else None
        except (TypeError, ValueError):
            return None

    def __str__(self) -> str:
        return self.message


class ConflictError(RemoteError):
    """The remote is still processing a create for the same SKU."""


class NotFoundError(RemoteError):
    pass


class TransientError(RemoteError):
    """Rate limiting, 5xx answers, timeouts and transport failures."""


class FatalError(RemoteError):
    """Misconfiguration or authentication failure; nothing sensible can continue."""


class ConflictMatcher:
    """Decides whether a remote error text means "SKU already being processed"."""

    def __init__(self, pattern: str | re.Pattern):
        self.pattern = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern

    @classmethod
    def from_phrases(cls, phrases: Iterable[str] = DEFAULT_CONFLICT_PHRASES) -> "ConflictMatcher":
        return cls("|".join(re.escape(p) for p in phrases if p))

    @classmethod
    def from_settings(cls, pattern: str | None = None) -> "ConflictMatcher":
        if pattern:
            return cls(pattern)
        return cls.from_phrases()

    def matches(self, message: str | None) -> bool:
        return bool(self.pattern.search(str(message or "").lower()))


def _decode_body(text: str) -> Any:
    try:
        return json.loads(text) if text and text.strip() else None
    except ValueError:
        return None


def classify_response(
    status_code: int,
    reason: str,
    text: str,
    matcher: ConflictMatcher,
) -> RemoteError:
    """Build the typed error for a non-2xx WooCommerce answer."""
    body = trim_body(text)
    message = f"WooCommerce API error: {status_code} {reason} - {body}"
    data = _decode_body(text)

    if status_code == 401:
        return FatalError(message, status_code=status_code, data=data)
    if matcher.matches(text) or matcher.matches(reason):
        return ConflictError(message, status_code=status_code, data=data)
    if status_code == 404:
        return NotFoundError(message, status_code=status_code, data=data)
    if status_code == 429 or status_code >= 500:
        return TransientError(message, status_code=status_code, data=data)
    return RemoteError(message, status_code=status_code, data=data)
