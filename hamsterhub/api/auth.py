"""
hamsterhub.api.auth — Discord OAuth2 + JWT issuance
====================================================

Every guild member can sign in to shop; the ``is_admin`` claim is set
when the member holds the configured admin role or is listed in
``admin_user_ids``.
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx
import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import delete

from hamsterhub.api.deps import (
    JWT_ALGORITHM,
    JWT_SECRET,
    get_config,
    get_current_user,
    get_engine,
    is_admin_payload,
)
from hamsterhub.config import HubConfig
from hamsterhub.constants import DISCORD_API
from hamsterhub.database.engine import get_session, run_db
from hamsterhub.database.models import OAuthState

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

OAUTH_STATE_TTL_SECONDS = 600
SESSION_TTL_HOURS = 12


def _oauth_env() -> tuple[str, str, str, str]:
    """Return required OAuth env vars or raise a clear 500."""
    names = ("DISCORD_CLIENT_ID", "DISCORD_CLIENT_SECRET", "DISCORD_REDIRECT_URI", "FRONTEND_URL")
    values = {name: os.getenv(name, "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise HTTPException(
            status_code=500,
            detail="Discord OAuth is not configured: missing " + ", ".join(missing),
        )
    return tuple(values[name] for name in names)  # type: ignore[return-value]


def _store_oauth_state(engine, state: str) -> None:
    """Persist an OAuth state token and prune stale entries."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        session.add(OAuthState(state=state))


def _consume_oauth_state(engine, state: str) -> bool:
    """Consume a one-time OAuth state token if valid and unexpired."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return True


def issue_token(
    user_id: int | str, username: str, *, is_admin: bool, avatar: str | None = None
) -> str:
    payload = {
        "sub": str(user_id),
        "username": username,
        "avatar": avatar,
        "is_admin": is_admin,
        "exp": datetime.now(UTC) + timedelta(hours=SESSION_TTL_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


@router.get("/login")
async def login(engine=Depends(get_engine)):
    """Redirect to Discord OAuth2 consent screen."""
    client_id, _, redirect_uri, _ = _oauth_env()

    state = secrets.token_urlsafe(32)
    await run_db(_store_oauth_state, engine, state)

    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "identify guilds.members.read",
            "state": state,
        }
    )
    return RedirectResponse(f"https://discord.com/oauth2/authorize?{query}")


@router.get("/callback")
async def callback(
    code: str,
    state: str,
    cfg: HubConfig = Depends(get_config),
    engine=Depends(get_engine),
):
    """Exchange OAuth code for a JWT session."""
    client_id, client_secret, redirect_uri, frontend_url = _oauth_env()

    if not await run_db(_consume_oauth_state, engine, state):
        raise HTTPException(400, "Invalid or expired OAuth state")

    transport = httpx.AsyncHTTPTransport(retries=1)
    async with httpx.AsyncClient(timeout=10, transport=transport) as client:
        token_resp = await client.post(
            f"{DISCORD_API}/oauth2/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "client_secret": client_secret,
                "scope": "identify guilds.members.read",
            },
        )
        if token_resp.status_code != 200:
            raise HTTPException(400, "OAuth token exchange failed")

        access_token = token_resp.json().get("access_token")
        if not access_token:
            raise HTTPException(400, "No access token returned")

        headers = {"Authorization": f"Bearer {access_token}"}
        user_resp = await client.get(f"{DISCORD_API}/users/@me", headers=headers)
        member_resp = await client.get(
            f"{DISCORD_API}/users/@me/guilds/{cfg.guild_id}/member",
            headers=headers,
        )

    if user_resp.status_code != 200:
        raise HTTPException(400, "Failed to fetch Discord user")
    if member_resp.status_code != 200:
        return RedirectResponse(f"{frontend_url}?auth_error=not_member")

    user_info = user_resp.json()
    member = member_resp.json()
    role_ids = {int(r) for r in member.get("roles", [])}
    is_admin = cfg.admin_role_id in role_ids or cfg.is_admin_id(int(user_info["id"]))

    username = member.get("nick") or user_info.get("global_name") or user_info.get("username", "Unknown")
    token = issue_token(
        user_info["id"], username, is_admin=is_admin, avatar=user_info.get("avatar")
    )
    logger.info("Issued session for %s (%s), admin=%s", username, user_info["id"], is_admin)
    return RedirectResponse(f"{frontend_url}/auth/callback?token={token}")


@router.get("/me")
async def me(
    user: dict = Depends(get_current_user),
    cfg: HubConfig = Depends(get_config),
):
    """Return the current signed-in member."""
    return {
        "id": user["sub"],
        "username": user.get("username", "Unknown"),
        "avatar": user.get("avatar"),
        "is_admin": is_admin_payload(user, cfg),
    }
