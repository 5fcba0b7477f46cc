"""Bearer token verification for merge actors.

Tokens are issued by the platform's auth service; this service only
verifies them and reads the acting user's ID from the ``sub`` claim.
"""

from jose import JWTError, jwt

from salonops.domain.errors import AuthenticationError
from salonops.settings import settings

_DEV_SECRET = "dev-secret-key-change-in-production"

if settings.environment == "production" and settings.jwt_secret_key == _DEV_SECRET:
    raise RuntimeError("JWT_SECRET_KEY must be set in production")


def read_actor_id(token: str) -> int:
    """Verify a bearer token and return the user it was issued to.

    Raises:
        AuthenticationError: If the token is invalid, expired, or names no user
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthenticationError("Invalid authentication credentials")

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token payload")
