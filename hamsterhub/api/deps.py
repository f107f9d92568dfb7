"""
hamsterhub.api.deps — FastAPI dependency injection
===================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from hamsterhub.config import HubConfig, load_config
from hamsterhub.database.engine import create_db_engine
from hamsterhub.services.entitlements import DiscordRoleOracle
from hamsterhub.services.ledger_service import RoleChecker

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "hamsterhub-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> HubConfig:
    return load_config()


@lru_cache(maxsize=1)
def _discord_role_oracle(guild_id: int) -> DiscordRoleOracle:
    token = os.getenv("DISCORD_BOT_TOKEN", "").strip()
    if not token:
        raise RuntimeError("DISCORD_BOT_TOKEN is not set; role-gated items cannot be checked.")
    return DiscordRoleOracle(token, guild_id)


def get_role_checker(cfg: Annotated[HubConfig, Depends(get_config)]) -> RoleChecker:
    """Return the ``(user_id, role_id) -> bool`` entitlement oracle.

    The Discord client is built on first use, so carts without role-gated
    items never need a bot token.
    """
    def has_role(user_id: int, role_id: int) -> bool:
        return _discord_role_oracle(cfg.guild_id).has_role(user_id, role_id)

    return has_role


def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if not str(payload.get("sub", "")).isdigit():
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")
    return payload


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return the member payload. Raises 401 if invalid."""
    return _decode_bearer(authorization)


def is_admin_payload(payload: dict, cfg: HubConfig) -> bool:
    return bool(payload.get("is_admin")) or cfg.is_admin_id(int(payload["sub"]))


def get_current_admin(
    user: Annotated[dict, Depends(get_current_user)],
    cfg: Annotated[HubConfig, Depends(get_config)],
) -> dict:
    """Validate JWT and require admin status. Raises 401/403."""
    if not is_admin_payload(user, cfg):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin access required")
    return user
