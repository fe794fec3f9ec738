"""
Tests for the default user id resolver.
"""
from types import SimpleNamespace

import pytest
from starlette.requests import Request

from ipcapture.customization import DefaultUserIdResolver
from ipcapture.ip_capture import StarletteRequestContext


def build_request(user=None, state=None) -> Request:
    scope = {"type": "http", "method": "GET", "path": "/", "headers": [], "state": state or {}}
    if user is not None:
        scope["user"] = user
    return Request(scope)


@pytest.fixture
def resolver() -> DefaultUserIdResolver:
    return DefaultUserIdResolver()


@pytest.mark.unit
class TestDefaultUserIdResolver:
    """Test user lookup on Starlette requests."""

    def test_state_user_id_preferred(self, resolver):
        request = build_request(
            user=SimpleNamespace(is_authenticated=True, email="other@example.com"),
            state={"user_id": 42},
        )
        assert resolver.resolve_user_id(request) == "42"

    def test_authenticated_user_email(self, resolver):
        request = build_request(user=SimpleNamespace(is_authenticated=True, email="user@example.com"))
        assert resolver.resolve_user_id(request) == "user@example.com"

    def test_username_used_when_email_like(self, resolver):
        request = build_request(user=SimpleNamespace(is_authenticated=True, email=None, username="user@example.com"))
        assert resolver.resolve_user_id(request) == "user@example.com"

    def test_non_email_identity_ignored(self, resolver):
        request = build_request(user=SimpleNamespace(is_authenticated=True, username="jdoe"))
        assert resolver.resolve_user_id(request) is None

    def test_unauthenticated_user(self, resolver):
        request = build_request(user=SimpleNamespace(is_authenticated=False, email="user@example.com"))
        assert resolver.resolve_user_id(request) is None

    def test_string_principal(self, resolver):
        assert resolver.resolve_user_id(build_request(user="user@example.com")) == "user@example.com"

    def test_anonymous_request(self, resolver):
        assert resolver.resolve_user_id(build_request()) is None

    def test_unwraps_request_context(self, resolver):
        context = StarletteRequestContext(build_request(state={"user_id": "u1"}))
        assert resolver.resolve_user_id(context) == "u1"

    def test_none_request(self, resolver):
        assert resolver.resolve_user_id(None) is None
