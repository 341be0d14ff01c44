import pytest
from werkzeug.security import generate_password_hash

from src.leavedesk.leavedesk.core.exceptions import AuthenticationError, ValidationError


def test_register_then_login(stack):
    user_id = stack.auth_service.register_user(email="  Anna@Example.COM ", full_name="Anna", password="s3cret-pass")

    session_user = stack.auth_service.authenticate("anna@example.com", "s3cret-pass")

    assert session_user.user_id == user_id
    assert session_user.email == "anna@example.com"
    assert session_user.full_name == "Anna"


def test_register_rejects_duplicates_and_weak_input(stack):
    stack.auth_service.register_user(email="a@x.test", full_name="A", password="long-enough")

    with pytest.raises(ValidationError, match="already exists"):
        stack.auth_service.register_user(email="A@x.test", full_name="A", password="long-enough")
    with pytest.raises(ValidationError, match="Password must be at least 8 characters"):
        stack.auth_service.register_user(email="b@x.test", full_name="B", password="short")
    with pytest.raises(ValidationError, match="Full name is required"):
        stack.auth_service.register_user(email="c@x.test", full_name="  ", password="long-enough")
    with pytest.raises(ValidationError, match="Invalid email format"):
        stack.auth_service.register_user(email="nope", full_name="C", password="long-enough")


@pytest.mark.parametrize("email, password", [("a@x.test", "wrong-pass"), ("ghost@x.test", "long-enough"), ("bad", "x")])
def test_authenticate_rejects_bad_credentials(stack, email, password):
    stack.users.create_user(email="a@x.test", full_name="A", password_hash=generate_password_hash("long-enough"))
    with pytest.raises(AuthenticationError, match="Invalid email or password"):
        stack.auth_service.authenticate(email, password)


def test_placeholder_hash_never_authenticates(stack):
    stack.users.create_user(email="seed@x.test", full_name="Seed", password_hash="CHANGE_ME")
    with pytest.raises(AuthenticationError):
        stack.auth_service.authenticate("seed@x.test", "CHANGE_ME")
