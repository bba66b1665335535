"""
Product-name extraction per platform.

Each adapter is a pure function of the HTML with no network access. Selector
chains are tried in order and the first non-empty text wins.
"""

import re
from typing import Callable, Dict, Sequence

from lxml import etree, html

from .models import Platform

_SPACE = re.compile(r"\s+")
_PARSER = html.HTMLParser(encoding='utf-8')


def _has_class(name: str) -> str:
    return f"contains(concat(' ', normalize-space(@class), ' '), ' {name} ')"


AMAZON_SELECTORS = (
    '//*[@id="productTitle"]',
    '//h1[@data-automation-id="product-title"]',
    f'//*[{_has_class("product-title")}]',
    f'//h1[{_has_class("a-size-large")}]',
    f'//*[{_has_class("product-title-word-break")}]',
    '//*[@data-asin]//h1',
)

WALMART_SELECTORS = (
    '//*[@data-automation-id="product-title"]',
    '//h1[@data-testid="product-title"]',
    '//*[@id="main-title"]',
    f'//*[{_has_class("prod-ProductTitle")}]',
    '//h1[@data-cy="product-title"]',
    '(//h1)[1]',
)


def clean_text(text: str) -> str:
    return _SPACE.sub(' ', text or '').strip()


def _first_match(document, selectors: Sequence[str]) -> str:
    for selector in selectors:
        for node in document.xpath(selector):
            text = clean_text(node.text_content())
            if text:
                return text
    return ''


def _parse(body: str):
    if not body or not body.strip():
        return None
    try:
        return html.fromstring(body.encode('utf-8'), parser=_PARSER)
    except (etree.ParserError, etree.XMLSyntaxError):
        return None


def extract_amazon(body: str) -> str:
    document = _parse(body)
    return _first_match(document, AMAZON_SELECTORS) if document is not None else ''


def extract_walmart(body: str) -> str:
    document = _parse(body)
    return _first_match(document, WALMART_SELECTORS) if document is not None else ''


EXTRACTORS: Dict[Platform, Callable[[str], str]] = {
    Platform.AMAZON: extract_amazon,
    Platform.WALMART: extract_walmart,
}


def extract_product_name(platform: Platform, body: str) -> str:
    """Product name from a page, or an empty string when none is found."""
    return EXTRACTORS[platform](body)
