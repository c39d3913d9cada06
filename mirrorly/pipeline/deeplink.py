"""Garment deep links: the URL shape printed into QR codes.

A deep link is `<base url>?id=<garment id>`. This shape is public (it lives on
printed QR codes) and must not change.
"""

import logging
from collections.abc import Mapping
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from ..models import Garment
from ..services.stores import InventoryStore

logger = logging.getLogger(__name__)

DEEP_LINK_PARAM = "id"


def build_deep_link(base_url: str, garment_id: str) -> str:
    parts = urlsplit(base_url)
    query = urlencode({DEEP_LINK_PARAM: garment_id})
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", query, ""))


def parse_garment_id(link: str | Mapping[str, str] | None) -> str | None:
    """Extract the garment id from a URL, a raw query string or parsed params."""
    if not link:
        return None
    if isinstance(link, Mapping):
        value = link.get(DEEP_LINK_PARAM)
    else:
        query = urlsplit(link).query if "?" in link else link.lstrip("?")
        values = parse_qs(query).get(DEEP_LINK_PARAM)
        value = values[0] if values else None
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class DeepLinkResolver:
    """Resolves a scanned link to a garment.

    Order: primary store by id, then the locally cached inventory by id.
    Neither resolving means the shopper lands on the default screen; lookup
    errors count as misses.
    """

    def __init__(self, primary: InventoryStore | None, cache: InventoryStore | None = None):
        self.primary = primary
        self.cache = cache

    async def resolve(self, link: str | Mapping[str, str] | None) -> Garment | None:
        garment_id = parse_garment_id(link)
        if garment_id is None:
            return None

        for source, store in (("primary", self.primary), ("cache", self.cache)):
            if store is None:
                continue
            try:
                garment = await store.get_garment(garment_id)
            except Exception as e:
                logger.warning("Deep link lookup in %s store failed for %s: %s", source, garment_id, e)
                continue
            if garment is not None:
                logger.info("Deep link %s resolved from %s store", garment_id, source)
                return garment

        logger.info("Deep link %s not found, routing to landing", garment_id)
        return None
