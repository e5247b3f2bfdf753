"""Token verification for WebSocket handshakes.

Tokens are issued elsewhere (the account service); this module only checks
them. Verification is optional: a connection without a valid token still
gets a working session, acting on the identity the client declares.
"""
import logging
from typing import Optional

import jwt

from chatrelay.chat.schemas import VerifiedIdentity
from chatrelay.config import JWTSecrets, get_config

logger = logging.getLogger(__name__)

# Claims that may carry the user id, in order of preference
USER_ID_CLAIMS = ("id", "userId", "sub")


class TokenVerifier:
    """Verifies signed JWTs and extracts the identity they carry."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    @classmethod
    def from_config(cls, secrets: Optional[JWTSecrets] = None) -> "TokenVerifier":
        secrets = secrets or get_config().secrets.jwt
        return cls(secrets.secret_key, secrets.algorithm)

    def verify(self, token: Optional[str]) -> Optional[VerifiedIdentity]:
        """Return the token's identity, or None if it is missing or invalid.

        The token must carry a ``username`` claim. The user id comes from
        ``id``, ``userId`` or ``sub``; a token with none of them falls back
        to the username.
        """
        if not token:
            return None
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.info("[Auth] Token expired, continuing as anonymous")
            return None
        except jwt.InvalidTokenError as e:
            logger.info(f"[Auth] Token verification failed ({e}), continuing as anonymous")
            return None

        username = claims.get("username")
        if not username:
            logger.info("[Auth] Token has no username claim, continuing as anonymous")
            return None

        user_id = next((str(claims[c]) for c in USER_ID_CLAIMS if claims.get(c)), username)
        logger.info(f"[Auth] Authenticated user: {username}")
        return VerifiedIdentity(user_id=user_id, username=username)
