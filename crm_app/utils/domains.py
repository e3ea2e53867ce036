"""
Domain helpers shared by company de-duplication and contact enrichment.
"""
import re
from typing import Any, Optional

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def extract_domain(value: Any) -> Optional[str]:
    """
    Reduce a website or URL to its bare host name.

    ``https://www.Example.com/about`` becomes ``example.com``. Returns None when
    nothing host-like remains.
    """
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None

    text = _SCHEME_RE.sub("", text)
    text = re.split(r"[/?#]", text, maxsplit=1)[0]
    text = text.split("@")[-1]
    text = text.split(":")[0]
    if text.startswith("www."):
        text = text[4:]
    text = text.strip(".")

    if "." not in text or " " in text:
        return None
    return text


def email_domain(email: Any) -> Optional[str]:
    """Return the part after ``@`` of an email address, lower-cased."""
    if not email or "@" not in str(email):
        return None
    domain = str(email).rsplit("@", 1)[1].strip().lower()
    return domain or None
