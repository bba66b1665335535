import pytest

from shieldfetch.extraction import clean_text, extract_amazon, extract_product_name, extract_walmart
from shieldfetch.models import Platform


def test_amazon_product_title(amazon_page):
    assert extract_amazon(amazon_page) == "Echo Dot (5th Gen, 2022 release) | Smart speaker with Alexa"


def test_amazon_falls_back_to_large_heading():
    body = '<html><body><h1 class="a-size-large product-heading">  Kindle   Paperwhite </h1></body></html>'

    assert extract_amazon(body) == "Kindle Paperwhite"


def test_amazon_skips_empty_matches():
    body = (
        '<html><body><span id="productTitle">   </span>'
        '<div data-asin="B0"><h1>Fire TV Stick</h1></div></body></html>'
    )

    assert extract_amazon(body) == "Fire TV Stick"


def test_walmart_product_title(walmart_page):
    assert extract_walmart(walmart_page) == "Nintendo Switch with Neon Blue and Neon Red Joy-Con"


def test_walmart_falls_back_to_first_heading():
    body = "<html><body><h1>Great Value Whole Milk</h1><h1>Related items</h1></body></html>"

    assert extract_walmart(body) == "Great Value Whole Milk"


@pytest.mark.parametrize("body", ["", "   ", "<html><body><p>nothing here</p></body></html>"])
def test_missing_title_is_empty(body):
    assert extract_product_name(Platform.AMAZON, body) == ""
    assert extract_product_name(Platform.WALMART, body) == ""


def test_dispatch_by_platform(amazon_page, walmart_page):
    assert extract_product_name(Platform.AMAZON, amazon_page).startswith("Echo Dot")
    assert extract_product_name(Platform.WALMART, walmart_page).startswith("Nintendo Switch")


def test_clean_text_collapses_whitespace():
    assert clean_text("  a\n\t b  ") == "a b"
    assert clean_text(None) == ""
