import httpx
import pytest

from ingest.config import SearchConfig
from ingest.search import SearchClient, extract_domain


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _config(**overrides):
    data = {
        "api_key": "test-key",
        "queries": ("sf concerts", "sf festivals", "sf markets"),
        "delay_seconds": 0.0,
    }
    data.update(overrides)
    return SearchConfig(**data)


RESULTS = {
    "sf concerts": [
        {"link": "https://www.sfgate.com/concerts", "title": "Concerts", "snippet": "..."},
        {"link": "https://funcheap.com/sf", "title": "Funcheap"},
    ],
    "sf festivals": [
        {"link": "https://funcheap.com/sf", "title": "Funcheap again"},
        {"link": "https://sf.gov/events", "title": "City events"},
        {"title": "no link"},
    ],
}


def _handler(request: httpx.Request) -> httpx.Response:
    query = request.url.params["q"]
    if query == "sf markets":
        return httpx.Response(500, json={"error": "boom"})
    return httpx.Response(200, json={"organic_results": RESULTS.get(query, [])})


def test_extract_domain():
    assert extract_domain("https://www.sfgate.com/a") == "sfgate.com"
    assert extract_domain("https://sf.gov") == "sf.gov"
    assert extract_domain("not a url") == "unknown"


def test_search_events_sends_expected_params():
    seen = []

    def handler(request):
        seen.append(dict(request.url.params))
        return _handler(request)

    client = SearchClient(_config(), http_client=_client(handler))
    results = client.search_events("sf concerts")

    assert [result.url for result in results] == ["https://www.sfgate.com/concerts", "https://funcheap.com/sf"]
    assert results[0].source == "sfgate.com"
    assert results[1].snippet == ""
    assert seen[0]["engine"] == "google"
    assert seen[0]["location"] == "San Francisco, CA"
    assert seen[0]["num"] == "20"
    assert seen[0]["api_key"] == "test-key"


def test_discover_dedups_in_first_seen_order_and_survives_failures():
    client = SearchClient(_config(), http_client=_client(_handler))

    urls = client.discover_event_urls()

    assert urls == [
        "https://www.sfgate.com/concerts",
        "https://funcheap.com/sf",
        "https://sf.gov/events",
    ]


def test_discover_truncates_to_cap():
    client = SearchClient(_config(max_total_results=2), http_client=_client(_handler))

    assert len(client.discover_event_urls()) == 2


def test_missing_api_key_makes_no_requests():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = SearchClient(_config(api_key=None), http_client=_client(handler))

    assert client.discover_event_urls() == []
    assert calls == []


def test_invalid_json_counts_as_failed_query():
    client = SearchClient(
        _config(queries=("sf concerts",)),
        http_client=_client(lambda request: httpx.Response(200, text="<html>oops</html>")),
    )

    assert client.search_events("sf concerts") == []


@pytest.mark.parametrize("body", [[{"link": "https://sf.gov/events"}], "just text", 42, None])
def test_non_object_json_body_returns_no_results(body):
    client = SearchClient(
        _config(queries=("sf concerts",)),
        http_client=_client(lambda request: httpx.Response(200, json=body)),
    )

    assert client.search_events("sf concerts") == []
