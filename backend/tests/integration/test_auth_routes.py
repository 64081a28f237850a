"""Integration tests for authentication routes."""
import pytest


@pytest.mark.integration
def test_sign_up_and_sign_in(client):
    """Test sign up and sign in."""
    created = client.post(
        "/auth/signup",
        json={"email": "New@Example.com", "password": "secret-pass", "display_name": "Newbie"},
    )
    assert created.status_code == 201
    assert created.json()["email"] == "new@example.com"
    assert created.json()["role"] == "user"

    signed_in = client.post("/auth/signin", json={"email": "new@example.com", "password": "secret-pass"})
    assert signed_in.status_code == 200
    body = signed_in.json()
    assert body["token"]
    assert body["user"]["display_name"] == "Newbie"


@pytest.mark.integration
def test_sign_up_duplicate_email(client):
    """Test sign up duplicate email."""
    payload = {"email": "dup@example.com", "password": "secret-pass"}
    client.post("/auth/signup", json=payload)

    response = client.post("/auth/signup", json=payload)

    assert response.status_code == 409
    assert response.json()["error"] == "Email already registered"


@pytest.mark.integration
def test_sign_up_invalid_email(client):
    """Test sign up invalid email."""
    response = client.post("/auth/signup", json={"email": "not-an-email", "password": "secret-pass"})

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.integration
def test_sign_in_wrong_password(client, sign_in):
    """Test sign in wrong password."""
    sign_in()

    response = client.post("/auth/signin", json={"email": "reader@example.com", "password": "wrong-pass"})

    assert response.status_code == 401


@pytest.mark.integration
def test_me_requires_token(client, sign_in):
    """Test me requires token."""
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    response = client.get("/auth/me", headers=sign_in())
    assert response.status_code == 200
    assert response.json()["email"] == "reader@example.com"


@pytest.mark.integration
def test_sign_out(client, sign_in):
    """Test sign out."""
    response = client.post("/auth/signout", headers=sign_in())

    assert response.status_code == 200
    assert response.json() == {"message": "Signed out"}


@pytest.mark.integration
def test_avatar_upload(client, sign_in, tmp_path):
    """Test avatar upload."""
    headers = sign_in()

    response = client.post(
        "/auth/avatar",
        content=b"\x89PNG fake image",
        headers={**headers, "X-Filename": "me.PNG", "Content-Type": "application/octet-stream"},
    )

    assert response.status_code == 200
    url = response.json()["avatar_url"]
    assert url.startswith("http://test/storage/avatars/")
    assert url.endswith(".png")
    assert client.get("/auth/me", headers=headers).json()["avatar_url"] == url

    stored = list((tmp_path / "buckets" / "avatars").iterdir())
    assert [path.read_bytes() for path in stored] == [b"\x89PNG fake image"]


@pytest.mark.integration
def test_avatar_upload_rejects_empty_body(client, sign_in):
    """Test avatar upload rejects empty body."""
    response = client.post("/auth/avatar", content=b"", headers={**sign_in(), "X-Filename": "me.png"})

    assert response.status_code == 400


@pytest.mark.integration
def test_avatar_upload_fails_when_storage_unreachable(offline_client, db_session):
    """Test avatar upload fails when storage unreachable."""
    from reviewhub.services.auth_service import AuthService

    AuthService(db_session).sign_up("reader@example.com", "secret-pass")
    token = offline_client.post(
        "/auth/signin", json={"email": "reader@example.com", "password": "secret-pass"}
    ).json()["token"]

    response = offline_client.post(
        "/auth/avatar",
        content=b"bytes",
        headers={"Authorization": f"Bearer {token}", "X-Filename": "me.png"},
    )

    assert response.status_code == 503
