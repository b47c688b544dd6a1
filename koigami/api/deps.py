"""
koigami.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from koigami.api.sessions import StoreRegistry
from koigami.config import KoigamiConfig, load_config
from koigami.database.engine import create_db_engine
from koigami.engine.listener import ProfileChangeListener
from koigami.services.backend import Identity
from koigami.services.sql_backend import SqlBackend

_WEAK_SECRETS = frozenset({
    "koigami-dev-secret-change-me",
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
def get_config() -> KoigamiConfig:
    path = Path(os.getenv("KOIGAMI_CONFIG", "config.yaml"))
    if not path.exists():
        return KoigamiConfig()
    return load_config(path)


@lru_cache(maxsize=1)
def get_listener() -> ProfileChangeListener:
    return ProfileChangeListener(get_engine())


@lru_cache(maxsize=1)
def get_backend() -> SqlBackend:
    return SqlBackend(
        get_engine(), get_listener(), timezone=get_config().checkin_timezone,
    )


@lru_cache(maxsize=1)
def get_registry() -> StoreRegistry:
    return StoreRegistry(get_backend(), get_config())


def get_current_identity(
    authorization: Annotated[str | None, Header()] = None,
) -> Identity:
    """Validate the bearer JWT and return the caller's identity. 401 if invalid."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return Identity(
        id=str(sub),
        full_name=payload.get("name"),
        avatar_url=payload.get("avatar_url"),
    )


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
