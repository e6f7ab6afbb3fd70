import pytest
from selectolax.parser import HTMLParser

from atcddd.errors import ParseError, ValidationError
from atcddd.services.crawl.spiders.atc_spider import (
    AtcSpider,
    forward_fill,
    is_leaf,
    normalize_header,
    parse_children,
    parse_dose_table,
    read_table,
)


def fake_parent_html(parent_code: str = "D") -> str:
    return f"""
    <html><body>
      <a href="/atc_ddd_index/?code={parent_code}01">Child One</a>
      <a href="/atc_ddd_index/?code={parent_code}02">Child Two</a>
      <a href="/atc_ddd_index/?code={parent_code}">Self (should be ignored)</a>
      <a href="/atc_ddd_index/?code=X99">Other Branch (ignored)</a>
    </body></html>
    """


FAKE_LEAF_HTML = """
<html><body>
  <table>
    <thead>
      <tr><th>ATC code</th><th>Name</th><th>DDD</th><th>U</th><th>Adm.R</th><th>Note</th></tr>
    </thead>
    <tbody>
      <tr><td>D01AA01</td><td>Nystatin</td><td>1</td><td>g</td><td>O</td><td></td></tr>
      <tr><td></td><td></td><td>0.5</td><td>g</td><td>P</td><td>Alt route</td></tr>
      <tr><td>D01AA02</td><td>Levorin</td><td>2</td><td>g</td><td>O</td><td></td></tr>
    </tbody>
  </table>
</body></html>
"""


def test_parse_children_scenario_d01a():
    kids = parse_children(HTMLParser(fake_parent_html("D01A")), "D01A")
    assert {k.code for k in kids} == {"D01A01", "D01A02"}
    assert all(k.code.startswith("D01A") and k.code != "D01A" for k in kids)
    assert [k.name for k in kids] == ["Child One", "Child Two"]


def test_parse_children_dedupes_uppercases_and_squishes_names():
    html = """
    <a href="?code=n02be01&showdescription=no">  paracetamol
        tablets </a>
    <a href="?code=N02BE01">duplicate</a>
    <a href="?lang=en&code=N02BE51">paracetamol, combinations</a>
    <a href="/other/page">no code</a>
    <a href="?code=N02B">ancestor</a>
    """
    kids = parse_children(HTMLParser(html), "N02BE")
    assert [k.code for k in kids] == ["N02BE01", "N02BE51"]
    assert kids[0].name == "paracetamol tablets"


def test_parse_children_only_returns_prefix_extensions():
    codes = ["A", "A01", "A01A", "B01", "A01AA", "A0", "AB", "X99"]
    html = "".join(f'<a href="?code={c}">{c}</a>' for c in codes)
    for parent in ("A", "A01", "A01A"):
        kids = parse_children(HTMLParser(html), parent)
        assert kids, parent
        assert all(k.code.startswith(parent) and k.code != parent for k in kids)


def test_parse_children_rejects_invalid_parent():
    with pytest.raises(ValidationError):
        parse_children(HTMLParser(fake_parent_html()), "d01")


def test_is_leaf_distinguishes_pages():
    assert is_leaf(HTMLParser(FAKE_LEAF_HTML))
    assert not is_leaf(HTMLParser(fake_parent_html("D01")))
    # A layout table without a code column is not a DDD table
    assert not is_leaf(HTMLParser("<table><tr><td>Menu</td><td>Links</td></tr></table>"))
    # A lone code column is not enough either
    assert not is_leaf(HTMLParser("<table><tr><td>Code</td></tr><tr><td>A</td></tr></table>"))


def test_parse_dose_table_fills_down_code_and_name():
    rows = parse_dose_table(HTMLParser(FAKE_LEAF_HTML))
    assert len(rows) == 3
    assert set(rows[0]) == {"code", "name", "dose_value", "unit", "route", "note"}
    assert rows[1]["code"] == "D01AA01"
    assert rows[1]["name"] == "Nystatin"
    assert rows[1]["dose_value"] == "0.5"
    assert rows[1]["route"] == "P"
    assert rows[1]["note"] == "Alt route"
    # Empty cells are absent, not blank strings; note is never filled down
    assert rows[0]["note"] is None
    assert rows[2]["note"] is None
    assert rows[2]["code"] == "D01AA02"


def test_parse_dose_table_drops_rows_before_first_code():
    html = """
    <table>
      <tr><td>ATC code</td><td>Name</td><td>DDD</td></tr>
      <tr><td></td><td></td><td>3</td></tr>
      <tr><td>j01ca04</td><td>Amoxicillin</td><td>1.5</td></tr>
    </table>
    """
    rows = parse_dose_table(HTMLParser(html))
    assert [r["code"] for r in rows] == ["J01CA04"]
    assert rows[0]["unit"] is None


def test_parse_dose_table_prefers_code_and_name_table_and_maps_synonyms():
    html = """
    <table><tr><td>Navigation</td></tr><tr><td>Home</td></tr></table>
    <table>
      <tr><th>Code</th><th>Name</th><th>DDD</th><th>Unit</th><th>Route</th><th>Notes</th><th>Remarks</th></tr>
      <tr><td>N02BE01</td><td>Paracetamol</td><td>3</td><td>g</td><td>O</td><td>x</td><td>kept aside</td></tr>
    </table>
    """
    rows = parse_dose_table(HTMLParser(html))
    assert rows == [
        {"code": "N02BE01", "name": "Paracetamol", "dose_value": "3", "unit": "g", "route": "O", "note": "x"}
    ]


def test_unknown_headers_are_preserved_but_not_selected():
    doc = HTMLParser("<table><tr><td>ATC code</td><td>Remarks</td></tr><tr><td>A</td><td>r</td></tr></table>")
    table = read_table(doc.css_first("table"))
    assert table.headers == ["atc code", "remarks"]
    assert table.fields == ["code", None]


def test_parse_dose_table_falls_back_to_first_table_and_none_without_tables():
    assert parse_dose_table(HTMLParser("<p>no tables here</p>")) is None
    rows = parse_dose_table(HTMLParser("<table><tr><td>Foo</td></tr><tr><td>bar</td></tr></table>"))
    assert rows == []


def test_normalize_header_collapses_whitespace():
    assert normalize_header("  ATC\n   Code ") == "atc code"
    assert normalize_header("Adm.R") == "adm.r"


def test_forward_fill_is_idempotent():
    rows = parse_dose_table(HTMLParser(FAKE_LEAF_HTML))
    once = forward_fill(rows)
    assert forward_fill(once) == once
    raw = [
        {"code": None, "name": None, "dose_value": "9"},
        {"code": "A01", "name": "x", "dose_value": None},
        {"code": None, "name": None, "dose_value": "2"},
    ]
    filled = forward_fill(raw)
    assert filled[0]["code"] is None
    assert filled[2]["code"] == "A01"
    assert forward_fill(filled) == filled
    # input rows are left untouched
    assert raw[2]["code"] is None


class _StaticFetcher:
    def __init__(self, html):
        self.html = html
        self.urls = []

    def fetch(self, url):
        self.urls.append(url)
        return HTMLParser(self.html)


def test_spider_leaf_page_result():
    fetcher = _StaticFetcher(FAKE_LEAF_HTML)
    page = AtcSpider(fetcher).fetch("D01AA")
    assert fetcher.urls == ["https://www.whocc.no/atc_ddd_index/?code=D01AA&showdescription=no"]
    assert page.type == "leaf"
    assert [(c.code, c.name) for c in page.codes] == [("D01AA01", "Nystatin"), ("D01AA02", "Levorin")]
    assert len(page.doses) == 3
    assert all(d.source_code == "D01AA" for d in page.doses)
    assert page.children == []


def test_spider_leaf_without_rows_registers_code_alone():
    html = "<table><tr><td>ATC code</td><td>Name</td><td>DDD</td></tr></table>"
    page = AtcSpider(_StaticFetcher(html)).fetch("V03AB")
    assert page.type == "leaf"
    assert [(c.code, c.name) for c in page.codes] == [("V03AB", None)]
    assert page.doses == []


def test_spider_parent_page_result():
    page = AtcSpider(_StaticFetcher(fake_parent_html("D01"))).fetch("D01")
    assert page.type == "parent"
    assert [c.code for c in page.children] == ["D0101", "D0102"]
    assert page.codes == page.children


def test_spider_wraps_unexpected_parser_failures(monkeypatch):
    from atcddd.services.crawl.spiders import atc_spider

    def boom(document):
        raise IndexError("broken table")

    monkeypatch.setattr(atc_spider, "is_leaf", boom)
    with pytest.raises(ParseError):
        AtcSpider(_StaticFetcher(FAKE_LEAF_HTML)).fetch("D01AA")
