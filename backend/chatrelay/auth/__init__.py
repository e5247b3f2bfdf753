"""Authentication module.

Verifies bearer tokens presented on the WebSocket handshake.

Services:
    - TokenVerifier: HS256 JWT verification (PyJWT).
"""

from .service import TokenVerifier

__all__ = ["TokenVerifier"]
