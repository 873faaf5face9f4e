"""
API key authentication for the game-night API.

Every key maps to a bettor id, and that id doubles as the bettor's coin
account id.  Keys come from the environment:

    API_KEY_USER1..API_KEY_USER5   numbered bettors (user1..user5)
    GAMENIGHT_API_KEYS             extra "bettor=key" pairs, comma separated
    GAMENIGHT_ADMIN_BETTOR         bettor allowed to run the night (user1)
"""

import logging
import os
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

logger = logging.getLogger(__name__)

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

ADMIN_BETTOR_ID = os.getenv("GAMENIGHT_ADMIN_BETTOR", "user1")
DEV_KEY = "dev-key-insecure"
MAX_NUMBERED_BETTORS = 5


def load_api_keys(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Build the key -> bettor id table.

    Raises ValueError when nothing is configured outside development, when
    a named pair is malformed, or when one key is claimed by two bettors.
    """
    env = os.environ if environ is None else environ
    keys: Dict[str, str] = {}

    def _claim(key: str, bettor_id: str) -> None:
        owner = keys.get(key)
        if owner is not None and owner != bettor_id:
            raise ValueError(f"API key shared by {owner} and {bettor_id}")
        keys[key] = bettor_id

    for i in range(1, MAX_NUMBERED_BETTORS + 1):
        key = env.get(f"API_KEY_USER{i}")
        if key:
            _claim(key, f"user{i}")

    for pair in (env.get("GAMENIGHT_API_KEYS") or "").split(","):
        if not pair.strip():
            continue
        bettor_id, sep, key = pair.partition("=")
        if not sep or not bettor_id.strip() or not key.strip():
            raise ValueError(f"Malformed GAMENIGHT_API_KEYS entry: {pair.strip()!r}")
        _claim(key.strip(), bettor_id.strip())

    if not keys:
        # Development fallback (never use in production)
        if env.get("ENVIRONMENT") == "development":
            logger.warning("No API keys configured; accepting %s as %s", DEV_KEY, ADMIN_BETTOR_ID)
            keys[DEV_KEY] = ADMIN_BETTOR_ID
        else:
            raise ValueError("No API keys configured! Set API_KEY_USER1 in environment")

    return keys


VALID_API_KEYS = load_api_keys()


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """
    Resolve the X-API-Key header to a bettor id.

    Usage in FastAPI routes:
        @app.get("/api/games/{game_id}/wagers/me")
        async def my_wagers(bettor_id: str = Depends(verify_api_key)):
            ...
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    bettor_id = VALID_API_KEYS.get(api_key)
    if bettor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return bettor_id


async def verify_admin_api_key(bettor_id: str = Security(verify_api_key)) -> str:
    """Only the night's host may confirm games, record results and settle."""
    if bettor_id != ADMIN_BETTOR_ID:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return bettor_id
