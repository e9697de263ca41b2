"""Resolve a usable Jira credential for a user, refreshing it near expiry.

Refresh failures are soft: the stored (possibly expired) credential is
returned with outcome ``STALE_CREDENTIAL_RETURNED`` so the caller still tries
the API call and Jira's own 401 becomes the final answer.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from loguru import logger

from standupllm.config import TOKEN_REFRESH_BUFFER_SECONDS, get_jira_client_id, get_jira_client_secret
from standupllm.db.token_storage import Credential
from standupllm.jira.oauth import OAuthError, TokenGrant, refresh_access_token


class CredentialOutcome(str, Enum):
    FRESH = "fresh"
    REFRESHED = "refreshed"
    STALE_CREDENTIAL_RETURNED = "stale_credential_returned"


@dataclass(frozen=True)
class ResolvedCredential:
    credential: Credential
    outcome: CredentialOutcome


class CredentialGuard:
    """Hands out fresh credentials from a token store."""

    def __init__(
        self,
        token_storage,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresher: Callable[[str, str, str], TokenGrant] = refresh_access_token,
        clock: Callable[[], datetime] | None = None,
        buffer: timedelta = timedelta(seconds=TOKEN_REFRESH_BUFFER_SECONDS),
    ):
        """Initialize the guard.

        Args:
            token_storage: Object with get_jira_credential / upsert_jira_credential
            client_id: OAuth client id (defaults to JIRA_CLIENT_ID)
            client_secret: OAuth client secret (defaults to JIRA_CLIENT_SECRET)
            refresher: Callable running the refresh-token grant
            clock: Returns the current aware datetime
            buffer: Refresh when the token expires within this window
        """
        self.token_storage = token_storage
        self._client_id = client_id if client_id is not None else get_jira_client_id()
        self._client_secret = client_secret if client_secret is not None else get_jira_client_secret()
        self._refresher = refresher
        self._clock = clock or (lambda: datetime.now(UTC))
        self._buffer = buffer

    def get_valid_credential(self, user_id: str) -> ResolvedCredential | None:
        """Return the user's credential, or None when Jira is not connected."""
        credential = self.token_storage.get_jira_credential(user_id)
        if credential is None:
            return None

        now = self._clock()
        if credential.expires_at >= now + self._buffer:
            return ResolvedCredential(credential, CredentialOutcome.FRESH)

        if not (self._client_id and self._client_secret):
            logger.warning(f"Jira token for user {user_id} is expiring but OAuth client credentials are not configured")
            return ResolvedCredential(credential, CredentialOutcome.STALE_CREDENTIAL_RETURNED)

        try:
            grant = self._refresher(credential.refresh_token, self._client_id, self._client_secret)
            refreshed = credential.model_copy(
                update={
                    "access_token": grant.access_token,
                    # Atlassian rotates refresh tokens; keep the old one only if none came back
                    "refresh_token": grant.refresh_token or credential.refresh_token,
                    "expires_at": grant.expires_at(now),
                }
            )
            self.token_storage.upsert_jira_credential(refreshed)
        except OAuthError as e:
            logger.error(f"Failed to refresh Jira token for user {user_id}: {e}")
            return ResolvedCredential(credential, CredentialOutcome.STALE_CREDENTIAL_RETURNED)
        except Exception as e:
            # Any other failure also keeps the stored token
            logger.error(f"Unexpected error refreshing Jira token for user {user_id}: {e}")
            return ResolvedCredential(credential, CredentialOutcome.STALE_CREDENTIAL_RETURNED)

        logger.info(f"Refreshed Jira token for user {user_id}, expires at {refreshed.expires_at.isoformat()}")
        return ResolvedCredential(refreshed, CredentialOutcome.REFRESHED)
