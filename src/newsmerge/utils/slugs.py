"""Slug generation for content items.

Slugs are assigned once at ingestion and never change, so downstream links
stay valid even when an item is later folded into another.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Container
from typing import Final

MAX_SLUG_LENGTH: Final = 80


def slugify(text: str, *, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Turn a headline into a URL-safe slug.

    Examples:
        "Ransomware Group X Hits Hospital" -> "ransomware-group-x-hits-hospital"
        "  Café  déjà vu!! " -> "cafe-deja-vu"
        "CVE-2025-1234: RCE in Foo" -> "cve-2025-1234-rce-in-foo"
    """
    # Strip accents, then drop anything not ASCII
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")

    if len(text) > max_length:
        text = text[:max_length].rsplit("-", 1)[0] or text[:max_length]

    return text or "item"


def unique_slug(base: str, taken: Container[str]) -> str:
    """Return ``base`` or the first ``base-N`` (N >= 2) not in ``taken``."""
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"
