"""Bearer-token verification against the external auth service."""
import logging
from typing import Optional

import httpx
from fastapi import Depends, Header, HTTPException

from shared.config import Configuration
from .dependencies import get_auth_config

logger = logging.getLogger("lumina.api")


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token.strip()


async def verify_token(token: str, config: Configuration) -> str:
    """Ask the auth service who owns ``token`` and return their user id."""
    if not config.auth_url:
        logger.error("LUMINA_AUTH_URL is not set; cannot verify identities")
        raise HTTPException(status_code=401, detail="Unable to verify identity")

    headers = {"Authorization": f"Bearer {token}"}
    if config.auth_api_key:
        headers["apikey"] = config.auth_api_key
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(config.auth_url, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning("Auth service unreachable: %s", exc)
        raise HTTPException(status_code=401, detail="Unable to verify identity")

    if response.status_code != 200:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = response.json().get("id")
    except ValueError:
        user_id = None
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return str(user_id)


async def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    config: Configuration = Depends(get_auth_config),
) -> str:
    """FastAPI dependency yielding the verified user id."""
    token = _bearer_token(authorization)
    return await verify_token(token, config)
