"""OAuth connect/callback server for Jira Cloud.

``/jira/connect`` redirects to Atlassian with an HMAC-signed state carrying the
user id and the page to return to; ``/jira/callback`` verifies that state,
exchanges the code, resolves the Jira site and stores the credential.
"""

import os

from agno.db.sqlite import SqliteDb
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger

from standupllm.config import get_callback_base_url, get_db_path, get_jira_client_id, get_jira_client_secret, get_oauth_state_secret
from standupllm.db.encryption import EncryptionKeyMissingError
from standupllm.db.token_storage import Credential, TokenStorage
from standupllm.jira.oauth import (
    OAuthError,
    build_authorization_url,
    exchange_code,
    get_accessible_jira_resource,
    sign_state,
    verify_state,
)

CALLBACK_PATH = "/jira/callback"
DEFAULT_RETURN_PATH = "/chat"


def _absolute(base_url: str, path: str) -> str:
    return path if path.startswith("http") else f"{base_url}{path}"


def create_app(token_storage: TokenStorage | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        token_storage: Credential store; defaults to the shared SQLite database

    Raises:
        EncryptionKeyMissingError: If no token encryption key is configured
    """
    if token_storage is None:
        db_path = get_db_path()
        try:
            token_storage = TokenStorage(agno_db=SqliteDb(db_file=str(db_path)))
            logger.info(f"OAuth callback server: token storage initialized at {db_path}")
        except EncryptionKeyMissingError as e:
            logger.error(f"CRITICAL: Failed to initialize token storage: {e}")
            raise

    app = FastAPI(
        title="StandupLLM Jira OAuth Server",
        description="Connects users' Jira Cloud accounts to StandupLLM",
        version="1.0.0",
    )
    app.state.token_storage = token_storage

    def base_url(request: Request) -> str:
        return get_callback_base_url(str(request.base_url).rstrip("/"))

    def fail(request: Request, code: str) -> RedirectResponse:
        return RedirectResponse(_absolute(base_url(request), f"{DEFAULT_RETURN_PATH}?error={code}"))

    @app.get("/health")
    async def health_check():
        """Health check endpoint for Kubernetes probes."""
        return {
            "status": "healthy",
            "database": token_storage.db_path,
            "jira_oauth_configured": bool(get_jira_client_id() and get_jira_client_secret()),
        }

    @app.get("/jira/connect")
    async def jira_connect(
        request: Request,
        user_id: str = Query(..., description="User to connect"),
        callback: str = Query(DEFAULT_RETURN_PATH, description="Page to return to after connecting"),
    ):
        client_id = get_jira_client_id()
        if not (client_id and get_jira_client_secret()):
            logger.error("Jira OAuth is not configured (JIRA_CLIENT_ID / JIRA_CLIENT_SECRET)")
            return JSONResponse(
                {"error": "Jira OAuth not configured. Please set JIRA_CLIENT_ID and JIRA_CLIENT_SECRET."},
                status_code=500,
            )
        secret = get_oauth_state_secret()
        if not secret:
            logger.error("STANDUPLLM_OAUTH_STATE_SECRET is not set")
            return JSONResponse({"error": "Failed to initiate Jira connection"}, status_code=500)

        redirect_uri = f"{base_url(request)}{CALLBACK_PATH}"
        logger.info(f"Starting Jira OAuth for user {user_id}")
        return RedirectResponse(build_authorization_url(client_id, redirect_uri, sign_state(user_id, callback, secret)))

    @app.get(CALLBACK_PATH)
    async def jira_callback(
        request: Request,
        code: str | None = Query(None, description="OAuth authorization code"),
        state: str | None = Query(None, description="Signed state from /jira/connect"),
        error: str | None = Query(None, description="Error reported by Atlassian"),
    ):
        if error:
            logger.error(f"Jira OAuth error from Atlassian: {error}")
            return fail(request, f"jira_oauth_{error}")
        if not code or not state:
            return fail(request, "missing_params")

        client_id = get_jira_client_id()
        client_secret = get_jira_client_secret()
        secret = get_oauth_state_secret()
        if not (client_id and client_secret and secret):
            return fail(request, "oauth_not_configured")

        verified = verify_state(state, secret)
        if verified is None:
            logger.warning("Rejected Jira OAuth callback with an invalid state")
            return fail(request, "invalid_state")
        user_id, callback_url = verified
        logger.info(f"🔔 Jira OAuth callback received for user {user_id}")

        redirect_uri = f"{base_url(request)}{CALLBACK_PATH}"
        try:
            grant = exchange_code(code, redirect_uri, client_id, client_secret)
        except OAuthError as e:
            if "invalid_grant" in str(e):
                logger.warning(f"Jira authorization code expired or reused for user {user_id}")
                return fail(request, "code_expired")
            logger.error(f"Failed to exchange Jira code for user {user_id}: {e}")
            return fail(request, "jira_connection_failed")

        try:
            resource = get_accessible_jira_resource(grant.access_token)
            if not resource.site_url:
                raise OAuthError("Could not determine Jira site URL")
            token_storage.upsert_jira_credential(
                Credential(
                    user_id=user_id,
                    cloud_id=resource.cloud_id,
                    site_url=resource.site_url,
                    access_token=grant.access_token,
                    refresh_token=grant.refresh_token or "",
                    expires_at=grant.expires_at(),
                )
            )
        except Exception as e:
            logger.error(f"Jira OAuth callback failed for user {user_id}: {e}")
            return fail(request, "jira_connection_failed")

        logger.info(f"✅ Connected Jira site {resource.site_url} for user {user_id}")
        return RedirectResponse(_absolute(base_url(request), f"{callback_url}?success=jira_connected"))

    return app


if __name__ == "__main__":
    import uvicorn

    # Get port from environment or default to 8501
    port = int(os.getenv("OAUTH_CALLBACK_PORT", "8501"))

    logger.info(f"Starting Jira OAuth server on port {port}")
    uvicorn.run("standupllm.oauth_callback.main:create_app", factory=True, host="0.0.0.0", port=port, log_level="info")
