"""Generic contact patterns applied to the visible text of a page."""
from __future__ import annotations

import re
from typing import Dict, Optional

EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_RE = re.compile(r"(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}")


def first_email(text: str) -> Optional[str]:
    match = EMAIL_RE.search(text)
    return match.group(0) if match else None


def first_phone(text: str) -> Optional[str]:
    match = PHONE_RE.search(text)
    return match.group(0).strip() if match else None


def scan_contacts(text: str) -> Dict[str, str]:
    """Return the first email and first phone number found in ``text``.

    Only the first match of each kind is kept; further contacts on the same
    page are ignored.
    """
    found: Dict[str, str] = {}
    if email := first_email(text):
        found["email"] = email
    if phone := first_phone(text):
        found["phone"] = phone
    return found
