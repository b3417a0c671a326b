"""Field extraction combining adapter rules with generic contact patterns."""
from __future__ import annotations

from typing import Dict, Mapping, Optional

import structlog
from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup
from soupsieve import SelectorSyntaxError

from harvest.orchestrator.jobs import AdapterType
from harvest.parse.contacts import scan_contacts
from harvest.parse.rules import RuleSet, rules_for, selectors_for

LOGGER = structlog.get_logger(__name__)

_INVISIBLE_TAGS = ("script", "style", "noscript", "template")


def _value_from_element(element, attr: Optional[str]) -> str:
    if attr:
        value = element.get(attr)
        if isinstance(value, list):
            value = " ".join(value)
        return (value or "").strip()
    return element.get_text(" ", strip=True)


def _first_match(soup: BeautifulSoup, rule_set: RuleSet, field_name: str) -> str:
    for selector, attr in selectors_for(rule_set, field_name):
        try:
            element = soup.select_one(selector)
        except SelectorSyntaxError:
            LOGGER.warning("bad_selector", field=field_name, selector=selector)
            continue
        if element is None:
            continue
        value = _value_from_element(element, attr)
        if value:
            return value
    return ""


def visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(_INVISIBLE_TAGS):
        tag.decompose()
    return soup.get_text(" ", strip=True)


def extract_fields(
    html: Optional[str],
    adapter_type: str,
    *,
    rules: Optional[Mapping[AdapterType, RuleSet]] = None,
    extract_contacts: bool = True,
) -> Dict[str, str]:
    """Extract a flat field mapping from ``html``.

    Empty values are dropped, so an empty dict means nothing was extracted.
    Malformed or empty markup yields an empty dict rather than an error.
    """
    if not html or not html.strip():
        return {}
    try:
        soup = BeautifulSoup(html, "html.parser")
    except ParserRejectedMarkup:
        LOGGER.warning("markup_rejected", adapter_type=adapter_type)
        return {}
    rule_set = rules_for(adapter_type, rules)

    data: Dict[str, str] = {}
    for field_name in rule_set.fields:
        data[field_name] = _first_match(soup, rule_set, field_name)

    if extract_contacts:
        for key, value in scan_contacts(visible_text(soup)).items():
            if not data.get(key):
                data[key] = value

    return {key: value for key, value in data.items() if value}
