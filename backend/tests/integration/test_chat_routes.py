"""Integration tests for chat rooms, messages and the message stream."""
import pytest

from reviewhub.models.users import UserRole


def _create_room(client, headers=None, name="General"):
    response = client.post("/chat/rooms", json={"name": name, "description": "Anything goes"}, headers=headers or {})
    assert response.status_code == 201
    return response.json()


@pytest.mark.integration
def test_create_list_and_get_room(client, sign_in):
    """Test create list and get room."""
    created = _create_room(client, sign_in())

    assert created["source"] == "remote"

    rooms = client.get("/chat/rooms").json()
    assert [room["id"] for room in rooms] == [created["id"]]
    assert rooms[0]["active_users"] == 0

    room = client.get(f"/chat/rooms/{created['id']}").json()
    assert room["name"] == "General"
    assert room["created_by"] is not None


@pytest.mark.integration
def test_get_missing_room_returns_404(client):
    """Test get missing room returns 404."""
    assert client.get("/chat/rooms/nope").status_code == 404


@pytest.mark.integration
def test_offline_room_is_created_on_device(offline_client):
    """Test offline room is created on device."""
    created = _create_room(offline_client)

    assert created["source"] == "local"
    assert created["id"].startswith("local_")

    rooms = offline_client.get("/chat/rooms").json()
    assert rooms[0]["active_users"] == 1
    assert rooms[0]["source"] == "local"


@pytest.mark.integration
def test_join_and_leave_track_presence(client):
    """Test join and leave track presence."""
    room_id = _create_room(client)["id"]

    assert client.post(f"/chat/rooms/{room_id}/join").json() == {"room_id": room_id, "success": True}
    client.post(f"/chat/rooms/{room_id}/join")
    assert client.get(f"/chat/rooms/{room_id}").json()["active_users"] == 2

    for _ in range(3):
        client.post(f"/chat/rooms/{room_id}/leave")
    assert client.get(f"/chat/rooms/{room_id}").json()["active_users"] == 0


@pytest.mark.integration
def test_join_unknown_room_reports_failure(client):
    """Test join unknown room reports failure."""
    assert client.post("/chat/rooms/missing/join").json()["success"] is False


@pytest.mark.integration
def test_send_and_list_messages(client, sign_in):
    """Test send and list messages."""
    headers = sign_in()
    room_id = _create_room(client, headers)["id"]

    for text in ("one", "two", "three"):
        response = client.post(f"/chat/rooms/{room_id}/messages", json={"content": text}, headers=headers)
        assert response.status_code == 201
        assert response.json()["source"] == "remote"

    messages = client.get(f"/chat/rooms/{room_id}/messages").json()
    assert [m["content"] for m in messages] == ["one", "two", "three"]
    assert {m["author"] for m in messages} == {"Reader"}

    latest_two = client.get(f"/chat/rooms/{room_id}/messages", params={"limit": 2}).json()
    assert [m["content"] for m in latest_two] == ["two", "three"]


@pytest.mark.integration
def test_offline_messages_are_kept_on_device(offline_client):
    """Test offline messages are kept on device."""
    response = offline_client.post("/chat/rooms/remote-room/messages", json={"content": "hello", "author": "Sam"})

    assert response.status_code == 201
    assert response.json()["source"] == "local"

    messages = offline_client.get("/chat/rooms/remote-room/messages").json()
    assert [m["content"] for m in messages] == ["hello"]


@pytest.mark.integration
def test_room_delete_permissions(client, sign_in):
    """Test room delete permissions."""
    creator = sign_in()
    room_id = _create_room(client, creator)["id"]
    client.post(f"/chat/rooms/{room_id}/messages", json={"content": "bye"}, headers=creator)

    stranger = sign_in("stranger@example.com", "Stranger")
    assert client.delete(f"/chat/rooms/{room_id}", headers=stranger).status_code == 403
    assert client.delete(f"/chat/rooms/{room_id}").status_code == 403

    assert client.delete(f"/chat/rooms/{room_id}", headers=creator).status_code == 200
    assert client.get(f"/chat/rooms/{room_id}").status_code == 404
    assert client.get(f"/chat/rooms/{room_id}/messages").json() == []


@pytest.mark.integration
def test_admin_can_delete_any_room(client, sign_in):
    """Test admin can delete any room."""
    room_id = _create_room(client, sign_in())["id"]
    admin = sign_in("admin@example.com", "Admin", role=UserRole.ADMIN)

    assert client.delete(f"/chat/rooms/{room_id}", headers=admin).status_code == 200


@pytest.mark.integration
def test_message_stream_pushes_new_messages(client):
    """Test message stream pushes new messages."""
    room_id = _create_room(client)["id"]
    client.post(f"/chat/rooms/{room_id}/messages", json={"content": "earlier", "author": "Sam"})

    with client.websocket_connect(f"/chat/rooms/{room_id}/ws") as websocket:
        initial = websocket.receive_json()
        assert [m["content"] for m in initial] == ["earlier"]

        client.post(f"/chat/rooms/{room_id}/messages", json={"content": "live", "author": "Alex"})

        update = websocket.receive_json()
        assert [m["content"] for m in update] == ["earlier", "live"]


@pytest.mark.integration
def test_message_stream_offline_sends_local_messages_once(offline_client):
    """Test message stream offline sends local messages once."""
    offline_client.post("/chat/rooms/remote-room/messages", json={"content": "queued", "author": "Sam"})

    with offline_client.websocket_connect("/chat/rooms/remote-room/ws") as websocket:
        initial = websocket.receive_json()

    assert [m["content"] for m in initial] == ["queued"]
