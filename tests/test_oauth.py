"""Tests for Atlassian OAuth helpers."""

from datetime import UTC, datetime
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from standupllm.jira.oauth import (
    OAuthError,
    TokenGrant,
    build_authorization_url,
    exchange_code,
    get_accessible_jira_resource,
    refresh_access_token,
    sign_state,
    verify_state,
)

SECRET = "unit-test-secret"


def make_response(status_code: int = 200, json_body=None, text: str = ""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = json_body
    response.text = text
    return response


class TestState:
    """Tests for the HMAC-signed state parameter."""

    def test_roundtrip(self):
        """Test that a signed state verifies back to user id and callback."""
        state = sign_state("user-1", "https://app.example.com/chat", SECRET)
        assert verify_state(state, SECRET) == ("user-1", "https://app.example.com/chat")

    def test_nonce_makes_states_unique(self):
        """Test that two states for the same user differ."""
        assert sign_state("user-1", "/chat", SECRET) != sign_state("user-1", "/chat", SECRET)

    def test_tampered_user_rejected(self):
        """Test that changing the payload invalidates the signature."""
        state = sign_state("user-1", "/chat", SECRET)
        payload, signature = state.rsplit(".", 1)
        nonce, _, callback = payload.split(":", 2)
        forged = f"{nonce}:attacker:{callback}.{signature}"
        assert verify_state(forged, SECRET) is None

    def test_wrong_secret_rejected(self):
        """Test that a state signed with another secret is rejected."""
        assert verify_state(sign_state("user-1", "/chat", SECRET), "other-secret") is None

    @pytest.mark.parametrize("state", ["", "no-signature", "abc.def", None])
    def test_malformed_rejected(self, state):
        """Test that malformed states are rejected without raising."""
        assert verify_state(state, SECRET) is None


class TestAuthorizationUrl:
    """Tests for the authorize redirect."""

    def test_parameters(self):
        """Test that the URL carries audience, scopes, consent prompt and state."""
        url = build_authorization_url("client-1", "https://app.example.com/jira/callback", "state-xyz")

        parsed = urlparse(url)
        params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://auth.atlassian.com/authorize"
        assert params["audience"] == "api.atlassian.com"
        assert params["client_id"] == "client-1"
        assert params["redirect_uri"] == "https://app.example.com/jira/callback"
        assert params["state"] == "state-xyz"
        assert params["response_type"] == "code"
        assert params["prompt"] == "consent"
        assert set(params["scope"].split(" ")) == {"read:jira-user", "read:jira-work", "write:jira-work", "offline_access"}


class TestTokenGrants:
    """Tests for code exchange and refresh."""

    def test_exchange_code(self):
        """Test that the authorization-code grant is posted as JSON."""
        session = MagicMock()
        session.post.return_value = make_response(
            json_body={"access_token": "at", "refresh_token": "rt", "expires_in": 3600, "scope": "read:jira-work"}
        )

        grant = exchange_code("code-1", "https://app/cb", "cid", "csecret", session=session)

        assert grant.access_token == "at"
        assert grant.refresh_token == "rt"
        body = session.post.call_args.kwargs["json"]
        assert body == {
            "grant_type": "authorization_code",
            "client_id": "cid",
            "client_secret": "csecret",
            "code": "code-1",
            "redirect_uri": "https://app/cb",
        }

    def test_refresh_access_token(self):
        """Test that the refresh-token grant is posted with the old refresh token."""
        session = MagicMock()
        session.post.return_value = make_response(json_body={"access_token": "new-at", "expires_in": 60})

        grant = refresh_access_token("old-rt", "cid", "csecret", session=session)

        assert grant.access_token == "new-at"
        assert grant.refresh_token is None
        assert session.post.call_args.kwargs["json"]["grant_type"] == "refresh_token"
        assert session.post.call_args.kwargs["json"]["refresh_token"] == "old-rt"

    def test_rejected_grant_raises(self):
        """Test that a non-2xx token response raises OAuthError with the body."""
        session = MagicMock()
        session.post.return_value = make_response(400, text='{"error":"invalid_grant"}')

        with pytest.raises(OAuthError) as exc_info:
            exchange_code("used-code", "https://app/cb", "cid", "csecret", session=session)

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in str(exc_info.value)

    def test_malformed_grant_body_raises(self):
        """Test that a 2xx response without an access token is reported as OAuthError."""
        session = MagicMock()
        session.post.return_value = make_response(json_body={"error": "server_error"})

        with pytest.raises(OAuthError, match="could not be parsed") as exc_info:
            refresh_access_token("old-rt", "cid", "csecret", session=session)

        assert exc_info.value.status_code == 200

    def test_expires_at(self):
        """Test that expiry is computed from expires_in."""
        now = datetime(2024, 1, 17, 12, tzinfo=UTC)
        assert TokenGrant(access_token="a", expires_in=600).expires_at(now) == datetime(2024, 1, 17, 12, 10, tzinfo=UTC)


class TestAccessibleResources:
    """Tests for the Jira site lookup."""

    def test_picks_first_jira_site(self):
        """Test that the first resource with read:jira-work wins and the scheme is stripped."""
        session = MagicMock()
        session.get.return_value = make_response(
            json_body=[
                {"id": "conf-1", "url": "https://wiki.example.net", "scopes": ["read:confluence-content.all"]},
                {"id": "cloud-9", "url": "https://acme.atlassian.net", "name": "acme", "scopes": ["read:jira-work", "write:jira-work"]},
            ]
        )

        resource = get_accessible_jira_resource("at", session=session)

        assert resource.cloud_id == "cloud-9"
        assert resource.site_url == "acme.atlassian.net"
        assert session.get.call_args.kwargs["headers"]["Authorization"] == "Bearer at"

    def test_no_jira_site_raises(self):
        """Test that a token without any Jira site is rejected."""
        session = MagicMock()
        session.get.return_value = make_response(json_body=[])

        with pytest.raises(OAuthError, match="No accessible Jira resources"):
            get_accessible_jira_resource("at", session=session)

    def test_lookup_failure_raises(self):
        """Test that a failed lookup raises OAuthError."""
        session = MagicMock()
        session.get.return_value = make_response(401)

        with pytest.raises(OAuthError):
            get_accessible_jira_resource("at", session=session)
