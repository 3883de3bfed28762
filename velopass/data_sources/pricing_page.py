"""Fetch a provider's public pricing page over HTTP."""
from __future__ import annotations

from dataclasses import dataclass

import requests

from velopass.config import DEFAULT_USER_AGENT
from velopass.data_sources.base import PageFetcher
from velopass.errors import FetchError
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="pricing_page")

session = requests.Session()

DEFAULT_TIMEOUT_SECONDS = 20.0
ACCEPT_HEADER = "text/html,application/xhtml+xml"


def fetch_pricing_html(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    user_agent: str = DEFAULT_USER_AGENT,
) -> str:
    """Return the raw HTML of `url`; any failure (status, network, timeout) raises FetchError."""
    headers = {"User-Agent": user_agent, "Accept": ACCEPT_HEADER}
    logger.info("Fetching pricing page %s", mask_url(url))
    try:
        resp = session.get(url, headers=headers, timeout=timeout)
    except requests.exceptions.Timeout as exc:
        raise FetchError(f"Timed out fetching pricing page after {timeout:g}s.") from exc
    except requests.exceptions.RequestException as exc:
        raise FetchError(f"Failed to fetch pricing page: {exc}") from exc

    if not resp.ok:
        raise FetchError(
            f"Failed to fetch pricing page (status {resp.status_code}).",
            status_code=resp.status_code,
        )
    return resp.text


@dataclass
class HttpPageFetcher(PageFetcher):
    """Page fetcher bound to a timeout and user agent."""

    timeout: float = DEFAULT_TIMEOUT_SECONDS
    user_agent: str = DEFAULT_USER_AGENT

    def fetch(self, url: str) -> str:
        """Fetch `url` with the configured timeout."""
        return fetch_pricing_html(url, timeout=self.timeout, user_agent=self.user_agent)
