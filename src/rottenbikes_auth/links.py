"""
Confirmation link parsing.

The backend emails links of the form http://<ui-host>/confirm/<token>, with
?origin=mobile appended when the request came from the mobile app. The app
receives the same path as a deep link (rottenbikes://confirm/<token>).
"""

from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from pydantic import BaseModel, ConfigDict

from rottenbikes_auth.models.attempt import Origin

APP_SCHEME = "rottenbikes"
CONFIRM_SEGMENT = "confirm"


class ConfirmationLink(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    origin: Optional[Origin] = None


def _parse_origin(value: Optional[str]) -> Optional[Origin]:
    if not value:
        return None
    try:
        return Origin(value.strip().lower())
    except ValueError:
        return None


def parse_confirmation_link(url: str) -> ConfirmationLink:
    """Extract the magic token and origin tag from a confirmation link.

    Accepts full web URLs, app deep links, the older ?token=... query form
    and a bare token. Unknown origin values are treated as unset.

    Raises:
        ValueError: if no token can be found.
    """
    raw = url.strip()
    if not raw:
        raise ValueError("empty confirmation link")

    parts = urlsplit(raw)
    if not parts.scheme and "/" not in raw and "?" not in raw:
        return ConfirmationLink(token=raw)

    query = parse_qs(parts.query)
    origin = _parse_origin((query.get("origin") or [None])[0])

    # rottenbikes://confirm/<token> puts "confirm" in the netloc
    segments = [s for s in parts.path.split("/") if s]
    if parts.scheme == APP_SCHEME and parts.netloc:
        segments.insert(0, parts.netloc)

    token: Optional[str] = None
    if CONFIRM_SEGMENT in segments:
        idx = segments.index(CONFIRM_SEGMENT)
        if idx + 1 < len(segments):
            token = segments[idx + 1]
    if not token:
        token = (query.get("token") or [None])[0]
    if not token:
        raise ValueError(f"no magic token in {url!r}")
    return ConfirmationLink(token=token, origin=origin)


def build_confirmation_link(base_url: str, token: str, origin: Optional[Origin] = None) -> str:
    link = f"{base_url.rstrip('/')}/{CONFIRM_SEGMENT}/{token}"
    if origin:
        link = f"{link}?{urlencode({'origin': origin.value})}"
    return link
