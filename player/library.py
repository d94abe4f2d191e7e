"""
Article library client.
Fetches articles from the API and reports playback telemetry back to it.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

import requests

from player.controller import TelemetrySink
from shared.constants import DEFAULT_API_URL, DEFAULT_NETWORK_TIMEOUT
from shared.models import Track

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    """Raised when the article API cannot be reached or answers with an error."""


class ArticleLibrary(TelemetrySink):
    """
    Thin HTTP client over /api/articles.

    Telemetry calls run on daemon threads so the player loop never waits on
    the network; failures are only logged.
    """

    def __init__(self, api_url: str = DEFAULT_API_URL, timeout: float = DEFAULT_NETWORK_TIMEOUT,
                 session: Optional[requests.Session] = None, background: bool = True):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.background = background

    @property
    def articles_endpoint(self) -> str:
        return f"{self.api_url}/articles"

    def list_articles(self, category: Optional[str] = None, featured: Optional[bool] = None,
                      limit: int = 10, page: int = 1) -> Dict[str, Any]:
        """
        Returns:
            {'tracks': [Track], 'total': int, 'total_pages': int, 'page': int}
        """
        params: Dict[str, Any] = {"limit": limit, "page": page}
        if category:
            params["category"] = category
        if featured is not None:
            params["featured"] = "true" if featured else "false"
        data = self._get(self.articles_endpoint, params=params)
        return {
            "tracks": [Track.from_dict(item) for item in data.get("articles", [])],
            "total": data.get("total", 0),
            "total_pages": data.get("totalPages", 0),
            "page": data.get("currentPage", page),
        }

    def get_track(self, article_id: str) -> Track:
        return Track.from_dict(self._get(f"{self.articles_endpoint}/{article_id}"))

    def list_categories(self) -> List[Dict[str, Any]]:
        return self._get(f"{self.api_url}/categories")

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise LibraryError(f"Could not reach {url}: {e}") from e
        if response.status_code == 404:
            raise LibraryError("Article not found")
        if not response.ok:
            raise LibraryError(f"{url} returned {response.status_code}")
        return response.json()

    # --- TelemetrySink ---

    def report_play(self, article_id: str):
        self._fire("POST", f"{self.articles_endpoint}/{article_id}/play")

    def report_duration(self, article_id: str, seconds: int):
        self._fire("PUT", f"{self.articles_endpoint}/{article_id}/duration", {"duration": int(seconds)})

    def _fire(self, method: str, url: str, body: Optional[Dict[str, Any]] = None):
        if self.background:
            threading.Thread(target=self._send, args=(method, url, body), daemon=True).start()
        else:
            self._send(method, url, body)

    def _send(self, method: str, url: str, body: Optional[Dict[str, Any]]):
        try:
            response = self.session.request(method, url, json=body, timeout=self.timeout)
            if not response.ok:
                logger.warning(f"{method} {url} returned {response.status_code}")
            else:
                logger.debug(f"{method} {url} ok")
        except requests.RequestException as e:
            logger.warning(f"{method} {url} failed: {e}")
