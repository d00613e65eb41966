"""Browser context seam: URL, navigation and user-agent sniffing."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Protocol, runtime_checkable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_MOBILE_UA_RE = re.compile(
    r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini",
    re.IGNORECASE,
)


@runtime_checkable
class BrowserContext(Protocol):
    @property
    def current_url(self) -> str:
        ...

    @property
    def user_agent(self) -> str:
        ...

    def replace_url(self, url: str) -> None:
        """Rewrite the visible URL without navigating (history.replaceState)."""
        ...

    def navigate(self, url: str) -> None:
        """Leave the page for ``url`` (location.href)."""
        ...

    def open_tab(self, url: str) -> None:
        ...


def is_mobile_user_agent(user_agent: str) -> bool:
    return bool(_MOBILE_UA_RE.search(user_agent or ""))


def completion_markers(url: str, markers: Iterable[str]) -> tuple[tuple[str, str], ...]:
    """Marker parameters present in ``url``'s query, in URL order."""
    wanted = set(markers)
    query = urlsplit(url).query
    return tuple(
        (key, value)
        for key, value in parse_qsl(query, keep_blank_values=True)
        if key in wanted
    )


def strip_markers(url: str, markers: Iterable[str]) -> str:
    """Return ``url`` without the marker parameters.

    Other query parameters and the fragment are kept.
    """
    wanted = set(markers)
    parts = urlsplit(url)
    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in wanted
    ]
    return urlunsplit(parts._replace(query=urlencode(kept)))
