"""Tests for the forum HTTP and WebSocket API."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from src.forum import websocket_router


ALICE = {"X-User-Id": "alice", "X-User-Name": "Alice%20Doe"}
BOB = {"X-User-Id": "bob"}
ADMIN = {"X-User-Id": "root", "X-User-Role": "admin"}

BASE = "/v1/forum"


def _create_topic(client: TestClient, headers=ALICE, **payload) -> dict:
    body = {"title": "Lesson plans", "body": "Share yours", "category": "profesores"}
    body.update(payload)
    response = client.post(f"{BASE}/topics", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def _reply(client: TestClient, topic_id: str, parent_id=None, headers=BOB) -> str:
    response = client.post(
        f"{BASE}/topics/{topic_id}/comments",
        json={"body": "Here is mine", "parent_comment_id": parent_id},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


class TestTopicEndpoints:
    """Tests for topic routes."""

    def test_create_topic(self, client: TestClient) -> None:
        """Creating a topic should return it with the caller as author."""
        data = _create_topic(client)

        assert data["author"] == {"id": "alice", "name": "Alice Doe"}
        assert data["category"] == "profesores"
        assert data["reply_count"] == 0
        assert data["reactions"] == {"like": 0, "thank": 0, "liked": False, "thanked": False}
        assert data["created_at"] is not None

    def test_create_topic_anonymous(self, client: TestClient) -> None:
        """Anonymous callers should get 401 with the sign-in message."""
        response = client.post(
            f"{BASE}/topics", json={"title": "x", "body": "y"}
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Sign in to interact"

    def test_create_topic_validation(self, client: TestClient) -> None:
        """Blank titles and unknown categories should be rejected."""
        blank = client.post(
            f"{BASE}/topics", json={"title": "   ", "body": "y"}, headers=ALICE
        )
        unknown = client.post(
            f"{BASE}/topics",
            json={"title": "x", "body": "y", "category": "nonsense"},
            headers=ALICE,
        )

        assert blank.status_code == 422
        assert unknown.status_code == 422
        assert blank.json()["message"] == "Validation error"

    def test_list_topics(self, client: TestClient) -> None:
        """Listing should filter by category, newest first."""
        first = _create_topic(client, category="recursos")
        _create_topic(client, category="general")
        third = _create_topic(client, category="recursos")

        response = client.get(f"{BASE}/topics", params={"category": "recursos"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [item["id"] for item in data["items"]] == [third["id"], first["id"]]

    def test_list_my_topics(self, client: TestClient) -> None:
        mine = _create_topic(client)
        _create_topic(client, headers=BOB)

        response = client.get(f"{BASE}/topics/mine", headers=ALICE)

        assert [item["id"] for item in response.json()["items"]] == [mine["id"]]

    def test_get_missing_topic(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/topics/nope")

        assert response.status_code == 404
        assert response.json()["message"] == "Topic not found"

    def test_edit_topic_owner_only(self, client: TestClient) -> None:
        """Only the author or an admin may edit a topic."""
        topic = _create_topic(client)

        denied = client.patch(
            f"{BASE}/topics/{topic['id']}", json={"title": "Mine now"}, headers=BOB
        )
        allowed = client.patch(
            f"{BASE}/topics/{topic['id']}", json={"title": "Better title"}, headers=ALICE
        )
        by_admin = client.patch(
            f"{BASE}/topics/{topic['id']}", json={"body": "Moderated"}, headers=ADMIN
        )

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["title"] == "Better title"
        assert allowed.json()["edited_at"] is not None
        assert by_admin.json()["body"] == "Moderated"

    def test_delete_topic_cascades(self, client: TestClient) -> None:
        topic = _create_topic(client)
        _reply(client, topic["id"])
        _reply(client, topic["id"])

        response = client.delete(f"{BASE}/topics/{topic['id']}", headers=ALICE)

        assert response.status_code == 200
        assert response.json() == {"topic_id": topic["id"], "comments_removed": 2}
        assert client.get(f"{BASE}/topics/{topic['id']}").status_code == 404


class TestCommentEndpoints:
    """Tests for comment routes."""

    def test_thread_nests_replies(self, client: TestClient) -> None:
        """The thread endpoint should return the forest in display order with depths."""
        topic = _create_topic(client)
        parent = _reply(client, topic["id"])
        child = _reply(client, topic["id"], parent_id=parent, headers=ALICE)
        sibling = _reply(client, topic["id"])

        response = client.get(f"{BASE}/topics/{topic['id']}/thread", headers=BOB)

        assert response.status_code == 200
        data = response.json()
        assert data["topic"]["reply_count"] == 3
        assert data["total_comments"] == 3
        assert [(node["id"], node["depth"]) for node in data["comments"]] == [
            (parent, 0),
            (child, 1),
            (sibling, 0),
        ]
        assert data["comments"][0]["reply_ids"] == [child]
        assert data["comments"][1]["parent_comment_id"] == parent
        assert data["comments"][2]["reply_ids"] == []

    def test_anonymous_reply_rejected(self, client: TestClient) -> None:
        """Anonymous replies should be refused with nothing written."""
        topic = _create_topic(client)

        response = client.post(
            f"{BASE}/topics/{topic['id']}/comments", json={"body": "hi"}
        )

        assert response.status_code == 401
        assert response.json()["message"] == "Sign in to interact"
        assert client.get(f"{BASE}/topics/{topic['id']}").json()["reply_count"] == 0

    def test_invalid_parent(self, client: TestClient) -> None:
        topic = _create_topic(client)

        response = client.post(
            f"{BASE}/topics/{topic['id']}/comments",
            json={"body": "hi", "parent_comment_id": "ghost"},
            headers=BOB,
        )

        assert response.status_code == 422
        assert response.json()["message"] == "Parent comment does not exist in this topic"

    def test_reply_to_missing_topic(self, client: TestClient) -> None:
        response = client.post(
            f"{BASE}/topics/nope/comments", json={"body": "hi"}, headers=BOB
        )

        assert response.status_code == 404

    def test_edit_and_delete_comment(self, client: TestClient) -> None:
        """Authors can edit and delete; others get 403."""
        topic = _create_topic(client)
        comment_id = _reply(client, topic["id"])
        url = f"{BASE}/topics/{topic['id']}/comments/{comment_id}"

        assert client.patch(url, json={"body": "x"}, headers=ALICE).status_code == 403
        edited = client.patch(url, json={"body": "Edited"}, headers=BOB)
        assert edited.json()["body"] == "Edited"
        assert edited.json()["edited_at"] is not None

        assert client.delete(url, headers=ALICE).status_code == 403
        assert client.delete(url, headers=BOB).json()["success"] is True
        assert client.get(url).status_code == 404
        assert client.get(f"{BASE}/topics/{topic['id']}").json()["reply_count"] == 0


class TestReactionEndpoints:
    """Tests for reaction routes."""

    def test_toggle_topic_like(self, client: TestClient) -> None:
        """Toggling twice should turn the like on and then off."""
        topic = _create_topic(client)
        url = f"{BASE}/topics/{topic['id']}/reactions/like"

        on = client.post(url, headers=BOB).json()
        off = client.post(url, headers=BOB).json()

        assert on["member"] is True
        assert on["reactions"]["like"] == 1
        assert on["reactions"]["liked"] is True
        assert off["member"] is False
        assert off["reactions"]["like"] == 0

    def test_toggle_comment_thank(self, client: TestClient) -> None:
        topic = _create_topic(client)
        comment_id = _reply(client, topic["id"])

        response = client.post(
            f"{BASE}/topics/{topic['id']}/comments/{comment_id}/reactions/thank",
            headers=ALICE,
        )

        assert response.json()["kind"] == "thank"
        assert response.json()["reactions"]["thanked"] is True

    def test_anonymous_toggle(self, client: TestClient) -> None:
        topic = _create_topic(client)

        response = client.post(f"{BASE}/topics/{topic['id']}/reactions/like")

        assert response.status_code == 401

    def test_unknown_kind(self, client: TestClient) -> None:
        topic = _create_topic(client)

        response = client.post(f"{BASE}/topics/{topic['id']}/reactions/love", headers=BOB)

        assert response.status_code == 422

    def test_toggle_missing_comment(self, client: TestClient) -> None:
        topic = _create_topic(client)

        response = client.post(
            f"{BASE}/topics/{topic['id']}/comments/nope/reactions/like", headers=BOB
        )

        assert response.status_code == 404


class TestRepairEndpoint:
    """Tests for the admin counter repair route."""

    def test_admin_only(self, client: TestClient) -> None:
        topic = _create_topic(client)
        url = f"{BASE}/topics/{topic['id']}/reply-count/repair"

        assert client.post(url).status_code == 401
        assert client.post(url, headers=ALICE).status_code == 403

    def test_repair(self, client: TestClient) -> None:
        topic = _create_topic(client)
        _reply(client, topic["id"])

        response = client.post(
            f"{BASE}/topics/{topic['id']}/reply-count/repair", headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json() == {"topic_id": topic["id"], "reply_count": 1}


class TestThreadWebSocket:
    """Tests for the live thread socket."""

    def test_unknown_topic_closes(self, client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/threads/nope"):
                pass

        assert exc_info.value.code == 4404

    def test_live_thread(self, client: TestClient) -> None:
        """The socket should push the forest, then push again after a reply."""
        topic = _create_topic(client)
        existing = _reply(client, topic["id"])

        with client.websocket_connect(f"/ws/threads/{topic['id']}", headers=BOB) as ws:
            message = ws.receive_json()
            while message["state"] != "live":
                message = ws.receive_json()

            assert message["type"] == "thread"
            assert [node["id"] for node in message["forest"]] == [existing]

            new_reply = _reply(client, topic["id"], parent_id=existing, headers=ALICE)
            message = ws.receive_json()
            while len(message["forest"]) < 2:
                message = ws.receive_json()

            assert message["forest"][0]["reply_ids"] == [new_reply]
            assert message["forest"][1]["id"] == new_reply
            assert message["forest"][1]["depth"] == 1
            assert message["fault"] is None

            ws.send_json({"type": "ping"})
            message = ws.receive_json()
            assert message == {"type": "pong"}

    def test_forward_failure_closes_socket(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A view that cannot be sent should close the socket with 1011."""
        topic = _create_topic(client)

        class BrokenMessage:
            @classmethod
            def from_view(cls, view, user_id=None):
                raise ValueError("cannot serialize view")

        monkeypatch.setattr(websocket_router, "ThreadViewMessage", BrokenMessage)

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws/threads/{topic['id']}", headers=BOB) as ws:
                ws.receive_json()

        assert exc_info.value.code == websocket_router.CLOSE_INTERNAL_ERROR

    def test_feed_end_closes_socket(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A feed that finishes should close the socket with 1001."""
        topic = _create_topic(client)

        async def finished_feed(observer, websocket, user_id):
            return None

        monkeypatch.setattr(websocket_router, "forward_views", finished_feed)

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws/threads/{topic['id']}", headers=BOB) as ws:
                ws.receive_json()

        assert exc_info.value.code == websocket_router.CLOSE_GOING_AWAY


class TestDeepThreads:
    """Tests for reply chains deeper than any recursion limit."""

    DEPTH = 500

    def _chain(self, client: TestClient, topic_id: str) -> list[str]:
        ids: list[str] = []
        parent = None
        for _ in range(self.DEPTH):
            parent = _reply(client, topic_id, parent_id=parent)
            ids.append(parent)
        return ids

    def test_thread_endpoint(self, client: TestClient) -> None:
        """The thread read should return every level of a 500-deep chain."""
        topic = _create_topic(client)
        ids = self._chain(client, topic["id"])

        response = client.get(f"{BASE}/topics/{topic['id']}/thread")

        assert response.status_code == 200
        data = response.json()
        assert data["total_comments"] == self.DEPTH
        assert [node["id"] for node in data["comments"]] == ids
        assert data["comments"][-1]["depth"] == self.DEPTH - 1
        assert data["comments"][-2]["reply_ids"] == [ids[-1]]

    def test_live_stream(self, client: TestClient) -> None:
        """The socket should stream the same 500-deep chain."""
        topic = _create_topic(client)
        ids = self._chain(client, topic["id"])

        with client.websocket_connect(f"/ws/threads/{topic['id']}", headers=BOB) as ws:
            message = ws.receive_json()
            while message["state"] != "live":
                message = ws.receive_json()

            assert [node["id"] for node in message["forest"]] == ids
            assert message["forest"][-1]["depth"] == self.DEPTH - 1
