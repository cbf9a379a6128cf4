"""Text and phone-number canonicalization used for every comparison."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")
_CHANNEL_SUFFIX = re.compile(r"@[\w.\-]+$")


def normalize_text(text: str | None) -> str:
    """Lowercase, strip combining accents and collapse whitespace.

    ``normalize_text("  HÓLA  Mundo ")`` and ``normalize_text("hola mundo")``
    both return ``"hola mundo"``. ``None`` and empty input yield ``""``.
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _WHITESPACE.sub(" ", stripped).strip()


def strip_channel_suffix(contact: str) -> str:
    """Drop transport addressing such as ``@s.whatsapp.net``."""
    return _CHANNEL_SUFFIX.sub("", contact.strip())


def normalize_phone(phone: str, country_code: str) -> str:
    """Canonical phone used for blacklist lookups.

    Only digits are kept and *country_code* is prefixed when the number does
    not already start with it.
    """
    digits = "".join(c for c in strip_channel_suffix(phone) if c.isdigit())
    if country_code and not digits.startswith(country_code):
        return f"{country_code}{digits}"
    return digits
