"""
Helpers for driving the API as a signed-in user.
"""
import pytest

from reviewhub.models.users import UserRole
from reviewhub.services.auth_service import AuthService


@pytest.fixture
def sign_in(client, db_session):
    """Create an account (once) and return bearer headers for it."""
    def apply(email="reader@example.com", display_name="Reader", role=UserRole.USER):
        service = AuthService(db_session)
        if service._find_by_email(email) is None:
            service.sign_up(email, "secret-pass", display_name=display_name, role=role)
        response = client.post("/auth/signin", json={"email": email, "password": "secret-pass"})
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.json()['token']}"}
    return apply
