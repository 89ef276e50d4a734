import html
import re
import secrets
import string
import time
from typing import Optional

import bleach

_BASE36 = string.digits + string.ascii_uppercase


def clean_text(value: Optional[str], max_length: int = 200) -> str:
    """Sanitize a user-supplied search string.

    - Removes NUL bytes
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Collapses runs of whitespace and trims to ``max_length``
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = html.unescape(bleach.clean(val, tags=[], strip=True))
    val = re.sub(r"\s+", " ", val).strip()
    return val[:max_length]


def escape_like(value: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so the term only matches literally."""
    return (
        value.replace(escape, escape * 2)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower())
    return slug.strip("-")


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"
