"""Confirmation link parsing tests."""

import pytest

from rottenbikes_auth.links import build_confirmation_link, parse_confirmation_link
from rottenbikes_auth.models import Origin


@pytest.mark.parametrize(
    "url,token,origin",
    [
        ("http://localhost:8081/confirm/mt1", "mt1", None),
        ("http://localhost:8081/confirm/mt1?origin=mobile", "mt1", Origin.MOBILE),
        ("https://rottenbikes.example/app/confirm/mt1/?origin=MOBILE", "mt1", Origin.MOBILE),
        ("rottenbikes://confirm/mt1?origin=mobile", "mt1", Origin.MOBILE),
        ("http://localhost:8081/confirm?token=mt1", "mt1", None),
        ("  mt1  ", "mt1", None),
        ("http://localhost:8081/confirm/mt1?origin=desktop", "mt1", None),
    ],
)
def test_parse(url, token, origin):
    link = parse_confirmation_link(url)
    assert link.token == token
    assert link.origin == origin


@pytest.mark.parametrize("url", ["", "   ", "http://localhost:8081/confirm/", "http://localhost:8081/profile"])
def test_parse_without_token(url):
    with pytest.raises(ValueError):
        parse_confirmation_link(url)


def test_build_matches_emailed_format():
    assert build_confirmation_link("http://localhost:8081/", "mt1") == "http://localhost:8081/confirm/mt1"
    assert (
        build_confirmation_link("http://localhost:8081", "mt1", Origin.MOBILE)
        == "http://localhost:8081/confirm/mt1?origin=mobile"
    )
    assert parse_confirmation_link(build_confirmation_link("http://x", "mt9", Origin.MOBILE)).origin == Origin.MOBILE
