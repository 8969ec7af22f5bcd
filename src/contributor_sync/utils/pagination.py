"""Page-walk helpers for the GitHub and Gitee contributor endpoints."""

import re
from collections.abc import Mapping
from typing import Optional

_LINK_PART = re.compile(r'^\s*<(?P<url>[^>]+)>\s*;\s*rel="?(?P<rel>[\w-]+)"?\s*$')


def parse_link_header(link_header: Optional[str]) -> dict[str, str]:
    """Map each ``rel`` of an RFC 8288 Link header to its URL.

    GitHub sends e.g.::

        <https://api.github.com/repositories/724712/contributors?page=2>; rel="next",
        <https://api.github.com/repositories/724712/contributors?page=5>; rel="last"

    Malformed parts are ignored.
    """
    relations: dict[str, str] = {}
    for part in (link_header or "").split(","):
        match = _LINK_PART.match(part)
        if match:
            relations[match["rel"]] = match["url"]
    return relations


def get_next_page_url(link_header: Optional[str]) -> Optional[str]:
    return parse_link_header(link_header).get("next")


def is_last_page(
    headers: Mapping[str, str],
    page: int,
    item_count: int,
    per_page: int,
) -> bool:
    """Decide whether a page walk is over after reading ``page``.

    Terminal conditions, in order:
      - the page held fewer items than requested
      - Gitee's ``total_page`` header says this was the last page
      - a Link header is present but carries no rel="next"
    """
    if item_count < per_page:
        return True

    total_page = headers.get("total_page")
    if total_page is not None and total_page.strip().isdigit():
        return page >= int(total_page)

    link_header = headers.get("link")
    if link_header is not None:
        return get_next_page_url(link_header) is None

    return False
