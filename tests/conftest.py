from pathlib import Path

import pytest

FIXTURES = Path(__file__).parent / "fixtures" / "html"


@pytest.fixture()
def html_fixture():
    def _read(name: str) -> str:
        return (FIXTURES / name).read_text(encoding="utf-8")

    return _read


@pytest.fixture()
def fixture_url():
    def _url(name: str) -> str:
        return (FIXTURES / name).resolve().as_uri()

    return _url
