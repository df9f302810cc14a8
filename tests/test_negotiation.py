"""
Brief: Tests for demoapp.negotiation Accept header handling.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from demoapp.negotiation import (
    APPLICATION_JSON,
    TEXT_HTML,
    AcceptParseError,
    MediaRange,
    negotiate,
    parse_accept,
)


@pytest.mark.parametrize(
    "header,expected",
    [
        (None, APPLICATION_JSON),
        ("", APPLICATION_JSON),
        ("application/json", APPLICATION_JSON),
        ("text/html", TEXT_HTML),
        ("*/*", APPLICATION_JSON),
        ("text/*", TEXT_HTML),
        ("text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8", TEXT_HTML),
        ("application/json;q=0.5, text/html;q=0.9", TEXT_HTML),
        ("text/html;q=0.5, application/json;q=0.5", APPLICATION_JSON),
        ("application/xml", None),
        ("text/html;q=0", None),
        ("*/*;q=0.1, application/json;q=0", TEXT_HTML),
        ("not a media type", None),
    ],
)
def test_negotiate(header, expected):
    assert negotiate(header) == expected


def test_negotiate_respects_available_order():
    assert negotiate("*/*", available=(TEXT_HTML, APPLICATION_JSON)) == TEXT_HTML
    assert negotiate("text/html", available=()) is None


def test_parse_accept_quality_and_extensions():
    ranges = parse_accept("text/html;level=1;q=0.7;ext=1, application/*")
    assert ranges == [
        MediaRange("text", "html", 0.7),
        MediaRange("application", "*", 1.0),
    ]
    assert ranges[0].specificity == 2
    assert ranges[1].specificity == 1
    assert ranges[1].matches(APPLICATION_JSON)
    assert not ranges[0].matches(APPLICATION_JSON)


@pytest.mark.parametrize("header", ["*/html", "text/html;q=2", "text/html;q=abc", "text"])
def test_parse_accept_rejects_malformed(header):
    with pytest.raises(AcceptParseError):
        parse_accept(header)
