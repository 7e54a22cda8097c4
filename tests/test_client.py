import asyncio

import httpx
import pytest
from pydantic import ValidationError

from bliptv_mcp.core import (
    BlipTVClient,
    ClientConfig,
    DataType,
    PostsParams,
    make_api_request,
)
from bliptv_mcp.errors import ErrorKind

V3_PAYLOAD = (
    b'blip_ws_results([{"title":"First"},{"title":"Second"}],'
    b'[{page:1},{total:50}]);'
)


class RecordingFetcher:
    def __init__(self, payload):
        self.payload = payload
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        return self.payload


def run(coro):
    return asyncio.run(coro)


def test_json_v3_result_carries_pagination_and_url():
    fetcher = RecordingFetcher(V3_PAYLOAD)
    client = BlipTVClient("json", version=3, fetcher=fetcher)

    result = run(client.get_videos("posts", "mercyscross", {"count": 2}))

    assert result.ok
    assert [post["title"] for post in result.data] == ["First", "Second"]
    assert result.pagination == {"page": "1", "total": "50"}
    assert result.request_url == fetcher.urls[0]
    assert result.request_url == "http://mercyscross.blip.tv/posts/?skin=json&version=3&pagelen=2"
    assert result.error is None


def test_json_v2_result_has_no_pagination():
    client = BlipTVClient("JSON", version=2, fetcher=RecordingFetcher(b'blip_ws_results([{"title":"x"}]);'))

    result = run(client.get_video_info(4011705))

    assert result.ok
    assert result.data == [{"title": "x"}]
    assert result.pagination is None
    assert result.request_url.endswith("/file/?skin=json&version=2&id=4011705")


def test_get_videos_drops_post_filters_for_other_sections():
    fetcher = RecordingFetcher(b"<rss/>")
    client = BlipTVClient("rss", fetcher=fetcher)

    result = run(client.get_videos("popular", "ignored", {"page": 2, "tags": "x", "count": 5}))

    assert result.ok
    assert result.data == "<rss/>"
    assert fetcher.urls == ["http://blip.tv/popular/?skin=rss&page=2"]


def test_search_videos():
    fetcher = RecordingFetcher(V3_PAYLOAD)
    client = BlipTVClient("json", fetcher=fetcher)

    result = run(client.search_videos("Hail Storm", {"page": 3, "count": 2}))

    assert result.ok
    assert fetcher.urls == ["http://blip.tv/search/?skin=json&version=3&search=Hail+Storm&page=3"]


def test_licenses_always_use_xml():
    fetcher = RecordingFetcher(b"<licenses/>")
    client = BlipTVClient("json", fetcher=fetcher)

    result = run(client.get_licenses())

    assert result.ok
    assert result.data == "<licenses/>"
    assert fetcher.urls == ["http://blip.tv/licenses/view/?skin=api"]
    assert client.data_type == DataType.JSON


@pytest.mark.parametrize("data_type", ["json", "api", "rss"])
def test_empty_response_fails_on_every_path(data_type):
    client = BlipTVClient(data_type, fetcher=RecordingFetcher(b""))

    result = run(client.get_videos("recent"))

    assert not result.ok
    assert result.data is None
    assert result.error_kind == ErrorKind.TRANSPORT_FAILURE
    assert result.request_url in result.error


def test_upstream_error_is_reported_verbatim():
    client = BlipTVClient("json", fetcher=RecordingFetcher(b'blip_ws_results([{"error":"Bad id 7"}]);'))

    result = run(client.get_video_info(7))

    assert not result.ok
    assert result.error == "Bad id 7"
    assert result.error_kind == ErrorKind.UPSTREAM_ERROR


def test_client_keeps_working_after_a_failure():
    fetcher = RecordingFetcher(b"")
    client = BlipTVClient("json", fetcher=fetcher)

    assert not run(client.get_videos("recent")).ok

    fetcher.payload = V3_PAYLOAD
    result = run(client.get_videos("recent"))
    assert result.ok
    assert result.error is None


def test_fetch_accepts_typed_and_plain_requests():
    fetcher = RecordingFetcher(V3_PAYLOAD)
    client = BlipTVClient("json", fetcher=fetcher)

    run(client.fetch(PostsParams(channel="demo", tags=["a", "b"])))
    run(client.fetch({"section": "featured", "page": 2}))

    assert fetcher.urls == [
        "http://demo.blip.tv/posts/?skin=json&version=3&topic_name=a%2Cb",
        "http://blip.tv/featured/?skin=json&version=3&page=2",
    ]


def test_fetch_rejects_fields_not_legal_for_the_section():
    client = BlipTVClient("json", fetcher=RecordingFetcher(V3_PAYLOAD))
    with pytest.raises(ValidationError):
        run(client.fetch({"section": "recent", "tags": ["a"]}))


def test_invalid_construction_and_sections():
    with pytest.raises(ValueError):
        BlipTVClient("yaml")

    client = BlipTVClient("json", fetcher=RecordingFetcher(V3_PAYLOAD))
    with pytest.raises(ValueError):
        run(client.get_videos("search"))
    with pytest.raises(ValueError):
        run(client.get_videos("bookmarks"))


def test_default_transport_uses_httpx():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=V3_PAYLOAD)

    client = BlipTVClient(
        "json",
        config=ClientConfig(user_agent="tests/1.0"),
        transport=httpx.MockTransport(handler),
    )

    result = run(client.get_videos("recent", params={"page": 1}))

    assert result.ok
    assert len(result.data) == 2
    assert str(seen[0].url) == "http://blip.tv/recent/?skin=json&version=3&page=1"
    assert seen[0].headers["User-Agent"] == "tests/1.0"


def test_http_error_status_is_a_transport_failure():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, content=b"down"))
    client = BlipTVClient("api", transport=transport)

    result = run(client.get_video_info(1))

    assert not result.ok
    assert result.error_kind == ErrorKind.TRANSPORT_FAILURE
    assert "http://blip.tv/file/?skin=api&id=1" in result.error


def test_make_api_request_returns_none_on_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    body = run(make_api_request("http://blip.tv/recent/?skin=api", transport=httpx.MockTransport(handler)))

    assert body is None


def test_null_upstream_error_is_not_returned_as_data():
    client = BlipTVClient("json", version=2, fetcher=RecordingFetcher(b'blip_ws_results([{"error":null}]);'))

    result = run(client.get_video_info(7))

    assert not result.ok
    assert result.data is None
    assert result.error_kind == ErrorKind.UPSTREAM_ERROR


def test_latin1_xml_passes_through_the_client():
    body = '<?xml version="1.0" encoding="ISO-8859-1"?><licenses><l>Créative</l></licenses>'
    client = BlipTVClient("json", fetcher=RecordingFetcher(body.encode("latin-1")))

    result = run(client.get_licenses())

    assert result.ok
    assert result.data == body
