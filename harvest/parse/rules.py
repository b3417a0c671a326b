"""Selector rule sets per adapter type."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import yaml

from harvest.orchestrator.jobs import AdapterType


@dataclass(frozen=True)
class RuleSet:
    """Priority-ordered selector expressions for each output field.

    An expression is a CSS selector, optionally suffixed with ``@attr`` (or
    ``::attr(name)``) to read an attribute instead of the element text.
    """

    fields: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def merged(self, overrides: "RuleSet") -> "RuleSet":
        combined = dict(self.fields)
        combined.update(overrides.fields)
        return RuleSet(fields=combined)


BUILTIN_RULES: Dict[AdapterType, RuleSet] = {
    AdapterType.ECOMMERCE: RuleSet(fields={
        "title": ("h1", ".product-title", "[data-testid*=title]"),
        "price": (".price", ".product-price", "[data-testid*=price]"),
        "description": (".description", ".product-description"),
    }),
    AdapterType.DIRECTORY: RuleSet(fields={
        "name": ("h1", ".business-name", ".company-name"),
        "company": (".company", ".business-name"),
        "address": (".address", ".location"),
    }),
    AdapterType.NEWS: RuleSet(fields={
        "title": ("h1", ".article-title", ".headline"),
        "description": (".article-summary", ".excerpt", ".description"),
    }),
    AdapterType.SOCIAL: RuleSet(fields={
        "name": (".profile-name", ".user-name", "h1"),
        "description": (".bio", ".description", ".profile-description"),
    }),
    AdapterType.CUSTOM: RuleSet(fields={
        "title": ("h1",),
        "description": ("meta[name=description]@content",),
    }),
}


def parse_expression(expression: str) -> Tuple[str, Optional[str]]:
    """Split ``selector@attr`` / ``selector::attr(name)`` into its parts."""
    expr = expression.strip().replace(" @", "@")
    if "::attr(" in expr:
        selector, attr = expr.split("::attr(", 1)
        return selector.strip(), attr.rstrip(")").strip()
    if "@" in expr:
        selector, attr = expr.rsplit("@", 1)
        return selector.strip(), attr.strip()
    return expr, None


def _as_selectors(value: object) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(item) for item in value if item)
    raise ValueError(f"Selector list expected, got {type(value).__name__}")


def load_rule_sets(path: Path) -> Dict[AdapterType, RuleSet]:
    """Load adapter overrides from YAML and merge them over the built-in rules.

    Expected layout::

        adapters:
          ecommerce:
            price: [".sale-price", ".price"]
    """
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    rules = dict(BUILTIN_RULES)
    for adapter_name, field_map in (data.get("adapters") or {}).items():
        adapter = AdapterType.parse(adapter_name)
        overrides = RuleSet(fields={name: _as_selectors(value) for name, value in (field_map or {}).items()})
        rules[adapter] = rules.get(adapter, RuleSet()).merged(overrides)
    return rules


def rules_for(adapter_type: str, rules: Optional[Mapping[AdapterType, RuleSet]] = None) -> RuleSet:
    table = rules if rules is not None else BUILTIN_RULES
    adapter = AdapterType.parse(adapter_type)
    return table.get(adapter) or table.get(AdapterType.CUSTOM) or RuleSet()


def selectors_for(rule_set: RuleSet, field_name: str) -> List[Tuple[str, Optional[str]]]:
    return [parse_expression(expr) for expr in rule_set.fields.get(field_name, ())]
