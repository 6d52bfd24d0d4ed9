"""Link-context provider: fetches the first URL in a text message.

Records the page title and description as a ``link_context`` enrichment.
"""

import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

import aiohttp
from bs4 import BeautifulSoup, Tag

from common.models.message import EnrichmentKind, MediaEnrichment, Message, TextMessage
from common.utils.datetime_utils import utc_now
from enrichment.config import EnrichmentConfig
from enrichment.exceptions import ProviderError, ProviderHTTPError
from enrichment.providers.base import ProviderSlot

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?)]}"
PROVIDER_VERSION = "1.0.0"


def extract_first_url(text: str | None) -> str | None:
    """Return the first http(s) URL in ``text``, without trailing punctuation."""
    if not text:
        return None
    match = URL_PATTERN.search(text)
    if match is None:
        return None
    return match.group(0).rstrip(_TRAILING_PUNCTUATION)


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def parse_page_metadata(html: str) -> dict[str, str]:
    """Extract title and description from an HTML page.

    OpenGraph values win over ``<title>`` and ``<meta name="description">``.
    """
    soup = BeautifulSoup(html, "html.parser")
    metadata: dict[str, str] = {}

    for prop in ("og:title", "og:description", "og:site_name"):
        tag = soup.find("meta", property=prop)
        if isinstance(tag, Tag):
            content = tag.get("content")
            if isinstance(content, str) and content.strip():
                metadata[prop.removeprefix("og:")] = _clean_text(content)

    if "title" not in metadata and soup.title and soup.title.string:
        metadata["title"] = _clean_text(soup.title.string)

    if "description" not in metadata:
        tag = soup.find("meta", {"name": "description"})
        if isinstance(tag, Tag):
            content = tag.get("content")
            if isinstance(content, str) and content.strip():
                metadata["description"] = _clean_text(content)

    return metadata


class LinkContextProvider:
    """Fetch link metadata over HTTP for text messages containing a URL.

    Args:
        session: An aiohttp-style session supporting ``session.get(...)`` as an
            async context manager. The caller owns its lifecycle.
        clock: Source of ``createdAt`` timestamps.
    """

    name = "link-context"
    slot = ProviderSlot.LINKS
    enrichment_kind = EnrichmentKind.LINK_CONTEXT

    def __init__(
        self,
        *,
        session: Any,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session = session
        self._clock = clock

    def supports(self, message: Message) -> bool:
        return isinstance(message, TextMessage) and extract_first_url(message.text) is not None

    async def enrich(self, message: Message, config: EnrichmentConfig) -> MediaEnrichment:
        """Fetch the message's first URL and build a ``link_context`` record.

        Raises:
            ProviderError: If the message carries no URL
            ProviderHTTPError: For any non-200 response
            aiohttp.ClientError: For transport failures
        """
        url = extract_first_url(getattr(message, "text", None))
        if url is None:
            raise ProviderError(self.name, f"no URL in message {message.guid}")

        timeout = aiohttp.ClientTimeout(total=config.request_timeout_seconds)
        async with self._session.get(url, timeout=timeout) as response:
            if response.status != 200:
                raise ProviderHTTPError(
                    self.name,
                    response.status,
                    retry_after=response.headers.get("Retry-After"),
                    url=url,
                )
            html = await response.text()

        metadata = parse_page_metadata(html)
        logger.debug(f"Link context for {message.guid}: {metadata.get('title', url)}")

        return MediaEnrichment(
            kind=self.enrichment_kind,
            provider=self.name,
            model="html-metadata",
            version=PROVIDER_VERSION,
            created_at=self._clock(),
            url=url,
            title=metadata.get("title"),
            summary=metadata.get("description"),
        )
