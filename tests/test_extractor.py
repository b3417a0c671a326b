from harvest.parse.contacts import scan_contacts
from harvest.parse.extractor import extract_fields


def test_news_article_fields_and_contacts(html_fixture):
    fields = extract_fields(html_fixture("news_article.html"), "news")
    assert fields == {
        "title": "City council approves budget",
        "description": "The council voted 7-2 on Tuesday night.",
        "email": "newsroom@daily.example",
        "phone": "(555) 123-4567",
    }


def test_script_text_is_not_scanned_for_contacts(html_fixture):
    fields = extract_fields(html_fixture("news_article.html"), "news")
    assert "spy@tracker.example" not in fields.values()


def test_selectors_apply_in_priority_order(html_fixture):
    fields = extract_fields(html_fixture("product.html"), "ecommerce")
    # the empty <h1> is skipped and .price outranks .product-price
    assert fields["title"] == "Fallback Title"
    assert fields["price"] == "$19.99"
    assert fields["description"] == "A sturdy kettle."
    assert "email" not in fields
    assert "phone" not in fields


def test_directory_adapter(html_fixture):
    fields = extract_fields(html_fixture("directory.html"), "directory")
    assert fields["name"] == "Acme Plumbing"
    assert fields["company"] == "Acme Plumbing LLC"
    assert fields["address"] == "12 Main St, Springfield"
    assert fields["email"] == "info@acme.example"
    assert fields["phone"] == "+1 555 222 3333"


def test_social_adapter():
    html = "<h1>Heading</h1><span class='user-name'>@jane</span><p class='bio'>Runner.</p>"
    assert extract_fields(html, "social") == {"name": "@jane", "description": "Runner."}


def test_unknown_adapter_falls_back_to_generic_rules(html_fixture):
    fields = extract_fields(html_fixture("news_article.html"), "something-else")
    assert fields["title"] == "City council approves budget"
    assert fields["description"] == "The council voted 7-2 on Tuesday."


def test_contacts_can_be_disabled(html_fixture):
    fields = extract_fields(html_fixture("directory.html"), "directory", extract_contacts=False)
    assert "email" not in fields
    assert "phone" not in fields


def test_empty_and_malformed_markup_yield_nothing():
    assert extract_fields("", "news") == {}
    assert extract_fields(None, "news") == {}
    assert extract_fields("   \n", "ecommerce") == {}
    assert extract_fields("<html><body><div><p>unclosed <b>tags", "ecommerce") == {}
    assert extract_fields("<<<>>> not html at all &&&", "custom") == {}


def test_only_first_contact_of_each_kind_is_kept():
    text = "a@x.example b@y.example 555-111-2222 555-333-4444"
    assert scan_contacts(text) == {"email": "a@x.example", "phone": "555-111-2222"}
