"""Atlassian OAuth 2.0 (3LO) helpers for Jira Cloud.

Covers the authorize URL, the authorization-code and refresh-token grants,
the accessible-resources lookup and an HMAC-signed ``state`` parameter.
"""

import hashlib
import hmac
import secrets
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import requests
from loguru import logger
from pydantic import BaseModel, Field

from standupllm.config import (
    ATLASSIAN_AUTH_URL,
    ATLASSIAN_RESOURCES_URL,
    ATLASSIAN_TOKEN_URL,
    HTTP_TIMEOUT_SECONDS,
    JIRA_OAUTH_SCOPES,
)

REQUIRED_RESOURCE_SCOPE = "read:jira-work"


class OAuthError(Exception):
    """Token endpoint or accessible-resources failure."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TokenGrant(BaseModel):
    """Response of the Atlassian token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int = Field(3600, description="Lifetime of the access token in seconds")
    scope: str | None = None

    def expires_at(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(UTC)) + timedelta(seconds=self.expires_in)


class JiraResource(BaseModel):
    """A Jira Cloud site the token can reach."""

    cloud_id: str
    site_url: str
    name: str | None = None


def build_authorization_url(client_id: str, redirect_uri: str, state: str) -> str:
    params = {
        "audience": "api.atlassian.com",
        "client_id": client_id,
        "scope": " ".join(JIRA_OAUTH_SCOPES),
        "redirect_uri": redirect_uri,
        "state": state,
        "response_type": "code",
        "prompt": "consent",
    }
    return f"{ATLASSIAN_AUTH_URL}?{urlencode(params)}"


def _post_token(payload: dict, session: requests.Session | None = None) -> TokenGrant:
    http = session or requests
    response = http.post(
        ATLASSIAN_TOKEN_URL,
        json=payload,
        headers={"Content-Type": "application/json"},
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    if not response.ok:
        logger.error(f"Atlassian token endpoint answered {response.status_code} for grant {payload['grant_type']}")
        raise OAuthError(f"Token request failed: {response.status_code} - {response.text}", status_code=response.status_code)
    try:
        return TokenGrant.model_validate(response.json())
    except ValueError as e:
        # Invalid JSON or a body without access_token (pydantic's ValidationError is a ValueError)
        logger.error(f"Atlassian token endpoint returned an unusable body for grant {payload['grant_type']}")
        raise OAuthError(f"Token response could not be parsed: {e}", status_code=response.status_code) from e


def exchange_code(
    code: str,
    redirect_uri: str,
    client_id: str,
    client_secret: str,
    session: requests.Session | None = None,
) -> TokenGrant:
    """Exchange an authorization code for access and refresh tokens.

    Args:
        code: Authorization code from the callback
        redirect_uri: Redirect URI used in the authorize request
        client_id: OAuth app client id
        client_secret: OAuth app client secret
        session: Optional requests session

    Returns:
        TokenGrant with access_token, refresh_token and expires_in

    Raises:
        OAuthError: If the token endpoint rejects the code
    """
    logger.debug("Exchanging Jira authorization code")
    return _post_token(
        {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        },
        session=session,
    )


def refresh_access_token(
    refresh_token: str,
    client_id: str,
    client_secret: str,
    session: requests.Session | None = None,
) -> TokenGrant:
    """Run the refresh-token grant. Atlassian rotates refresh tokens on use."""
    logger.debug("Refreshing Jira access token")
    return _post_token(
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        },
        session=session,
    )


def get_accessible_jira_resource(access_token: str, session: requests.Session | None = None) -> JiraResource:
    """Resolve the cloud id and site of the first Jira site with ``read:jira-work``.

    Raises:
        OAuthError: If the lookup fails or no Jira site is accessible
    """
    http = session or requests
    response = http.get(
        ATLASSIAN_RESOURCES_URL,
        headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        timeout=HTTP_TIMEOUT_SECONDS,
    )
    if not response.ok:
        raise OAuthError(f"Failed to get accessible resources: {response.status_code}", status_code=response.status_code)

    for resource in response.json() or []:
        if REQUIRED_RESOURCE_SCOPE in (resource.get("scopes") or []):
            site_url = (resource.get("url") or "").removeprefix("https://")
            logger.info(f"Resolved Jira site {site_url} ({resource.get('id')})")
            return JiraResource(cloud_id=resource["id"], site_url=site_url, name=resource.get("name"))

    raise OAuthError("No accessible Jira resources found")


def _signature(secret: str, payload: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def sign_state(user_id: str, callback_url: str, secret: str) -> str:
    """Build ``nonce:user_id:callback.signature`` for the authorize redirect."""
    payload = f"{secrets.token_hex(16)}:{user_id}:{callback_url}"
    return f"{payload}.{_signature(secret, payload)}"


def verify_state(state: str, secret: str) -> tuple[str, str] | None:
    """Return ``(user_id, callback_url)`` for a valid state, or None."""
    payload, sep, signature = (state or "").rpartition(".")
    if not sep or not hmac.compare_digest(signature, _signature(secret, payload)):
        return None

    parts = payload.split(":", 2)
    if len(parts) != 3 or not parts[1]:
        return None
    _, user_id, callback_url = parts
    return user_id, callback_url or "/"
