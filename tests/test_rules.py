from pathlib import Path

from harvest.orchestrator.jobs import AdapterType
from harvest.parse.extractor import extract_fields
from harvest.parse.rules import BUILTIN_RULES, load_rule_sets, parse_expression, rules_for


def test_parse_expression_variants():
    assert parse_expression("h1") == ("h1", None)
    assert parse_expression("meta[name=description]@content") == ("meta[name=description]", "content")
    assert parse_expression("a.link ::attr(href)") == ("a.link", "href")


def test_rules_for_unknown_adapter_uses_generic_rules():
    assert rules_for("unheard-of") is BUILTIN_RULES[AdapterType.CUSTOM]
    assert rules_for("NEWS") is BUILTIN_RULES[AdapterType.NEWS]


def test_yaml_overrides_merge_over_builtin_rules(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(
        "adapters:\n"
        "  ecommerce:\n"
        "    price: ['.sale-price', '.price']\n"
        "    category: '.crumb'\n",
        encoding="utf-8",
    )
    rules = load_rule_sets(path)
    ecommerce = rules[AdapterType.ECOMMERCE]
    assert ecommerce.fields["price"] == (".sale-price", ".price")
    assert ecommerce.fields["category"] == (".crumb",)
    assert ecommerce.fields["title"] == BUILTIN_RULES[AdapterType.ECOMMERCE].fields["title"]
    assert rules[AdapterType.NEWS] is BUILTIN_RULES[AdapterType.NEWS]

    html = "<h1>Kettle</h1><span class='price'>$20</span><span class='sale-price'>$15</span><b class='crumb'>Kitchen</b>"
    fields = extract_fields(html, "ecommerce", rules=rules)
    assert fields == {"title": "Kettle", "price": "$15", "category": "Kitchen"}


def test_shipped_rules_file_loads():
    rules = load_rule_sets(Path("config/rules.yaml"))
    assert "category" in rules[AdapterType.NEWS].fields
