from __future__ import annotations

import pytest

from mapin.navigation.deep_links import extract_metadata, resolve_deep_link


@pytest.mark.parametrize(
    ("deep_link", "route"),
    [
        ("mapin://friendRequests/req-1", "friends?tab=REQUESTS"),
        ("mapin://friendAccept/req-1", "friends?tab=FRIENDS"),
        ("mapin://profile/user-7", "profile/user-7"),
        ("mapin://profile", "profile"),
        ("mapin://messages/conv-9", "conversation/conv-9"),
        ("mapin://messages", "chat"),
        ("mapin://events/event-3", "map"),
        ("mapin://map", "map"),
    ],
)
def test_known_links_resolve(deep_link, route):
    target = resolve_deep_link(deep_link)
    assert target.recognized is True
    assert target.route == route


@pytest.mark.parametrize("deep_link", ["https://example.com/messages/1", "mapin://settings", "", "::::"])
def test_unknown_links_fall_back_to_map(deep_link):
    target = resolve_deep_link(deep_link)
    assert target.recognized is False
    assert target.route == "map"


def test_metadata_includes_path_id_and_query():
    assert extract_metadata("mapin://messages/conv-9?from=push") == {"conversationId": "conv-9", "from": "push"}
    assert extract_metadata("mapin://events/event-3") == {"eventId": "event-3"}
    assert extract_metadata("mapin://map") == {}


def test_resolve_endpoint(client):
    response = client.get("/v1/deep-links/resolve", params={"url": "mapin://profile/user-7"})
    assert response.status_code == 200
    assert response.json()["data"] == {
        "route": "profile/user-7",
        "metadata": {"userId": "user-7"},
        "recognized": True,
    }
