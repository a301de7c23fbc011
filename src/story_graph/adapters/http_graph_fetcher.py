"""httpx-based fetch collaborator for the macro and fine graph endpoints."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class HttpGraphFetcher:
    """Fetch `{isSuccess, result}` envelopes; every failure is reported as None."""

    def __init__(
        self,
        api_base_url: str = "http://127.0.0.1:8000",
        *,
        access_token: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._access_token = access_token
        self._timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def api_base_url(self) -> str:
        return self._api_base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_connections=20),
                timeout=self._timeout_seconds,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        if not self._access_token:
            return {}
        return {"Authorization": f"Bearer {self._access_token}"}

    async def fetch_fine_graph(
        self, *, book_id: str, chapter_idx: int, event_idx: int
    ) -> dict[str, Any] | None:
        """Fetch the graph for one event of one chapter."""
        return await self._get_envelope(
            "/api/graph/fine",
            {"bookId": book_id, "chapterIdx": chapter_idx, "eventIdx": event_idx},
        )

    async def fetch_macro_graph(
        self, *, book_id: str, up_to_chapter: int
    ) -> dict[str, Any] | None:
        """Fetch the cumulative graph up to and including one chapter."""
        return await self._get_envelope(
            "/api/graph/macro",
            {"bookId": book_id, "uptoChapter": up_to_chapter},
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_envelope(
        self, path: str, params: dict[str, str | int]
    ) -> dict[str, Any] | None:
        url = f"{self._api_base_url}{path}"
        try:
            response = await self._get_client().get(
                url, params=params, headers=self._headers(), timeout=self._timeout_seconds
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "fetch.http_status path=%s status=%s params=%s",
                path,
                exc.response.status_code,
                params,
            )
            return None
        except httpx.HTTPError as exc:
            logger.warning("fetch.transport_error path=%s error=%s", path, exc)
            return None
        except ValueError:
            logger.warning("fetch.invalid_json path=%s", path)
            return None
        if not isinstance(payload, dict):
            logger.warning("fetch.unexpected_payload path=%s type=%s", path, type(payload).__name__)
            return None
        if not payload.get("isSuccess", False):
            logger.info("fetch.unsuccessful path=%s params=%s", path, params)
        return payload
