from __future__ import annotations

import httpx
import pytest

from story_graph.adapters.http_graph_fetcher import HttpGraphFetcher


def _fetcher(handler: httpx.MockTransport, **kwargs: object) -> HttpGraphFetcher:
    client = httpx.AsyncClient(transport=handler)
    return HttpGraphFetcher(
        "https://graph.example.com/", client=client, **kwargs  # type: ignore[arg-type]
    )


@pytest.mark.asyncio
async def test_fine_graph_request_carries_query_and_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"isSuccess": True, "result": {"characters": []}})

    fetcher = _fetcher(httpx.MockTransport(handler), access_token="secret")

    payload = await fetcher.fetch_fine_graph(book_id="book-1", chapter_idx=2, event_idx=5)

    assert payload == {"isSuccess": True, "result": {"characters": []}}
    request = seen[0]
    assert request.url.path == "/api/graph/fine"
    assert request.url.params["bookId"] == "book-1"
    assert request.url.params["chapterIdx"] == "2"
    assert request.url.params["eventIdx"] == "5"
    assert request.headers["Authorization"] == "Bearer secret"
    assert fetcher.api_base_url == "https://graph.example.com"


@pytest.mark.asyncio
async def test_macro_graph_request_uses_upto_chapter() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"isSuccess": False})

    fetcher = _fetcher(httpx.MockTransport(handler))

    payload = await fetcher.fetch_macro_graph(book_id="book-1", up_to_chapter=3)

    assert payload == {"isSuccess": False}
    assert seen[0].url.path == "/api/graph/macro"
    assert seen[0].url.params["uptoChapter"] == "3"
    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_http_errors_are_reported_as_missing() -> None:
    fetcher = _fetcher(httpx.MockTransport(lambda request: httpx.Response(503)))
    assert await fetcher.fetch_fine_graph(book_id="b", chapter_idx=1, event_idx=1) is None


@pytest.mark.asyncio
async def test_transport_errors_are_reported_as_missing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    fetcher = _fetcher(httpx.MockTransport(handler))
    assert await fetcher.fetch_macro_graph(book_id="b", up_to_chapter=1) is None


@pytest.mark.asyncio
async def test_invalid_json_and_non_object_payloads_are_missing() -> None:
    not_json = _fetcher(httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))
    a_list = _fetcher(httpx.MockTransport(lambda request: httpx.Response(200, json=[1, 2])))
    assert await not_json.fetch_fine_graph(book_id="b", chapter_idx=1, event_idx=1) is None
    assert await a_list.fetch_fine_graph(book_id="b", chapter_idx=1, event_idx=1) is None


@pytest.mark.asyncio
async def test_close_only_closes_owned_client() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    borrowed = HttpGraphFetcher(client=client)
    await borrowed.close()
    assert not client.is_closed
    await client.aclose()

    owned = HttpGraphFetcher()
    owned._get_client()
    await owned.close()
    assert owned._client is None
