"""Bearer credential to user resolution for the API handlers."""

from dataclasses import dataclass
from typing import Optional

from majitask.services.supabase_client import SupabaseClient
from majitask.utils.errors import AuthenticationError
from majitask.utils.logging import get_structured_logger, mask_token

logger = get_structured_logger(__name__)


@dataclass
class AuthenticatedUser:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


def extract_bearer_token(headers: Optional[dict]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer ...`` header."""
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == "authorization" and isinstance(value, str):
            scheme, _, token = value.partition(" ")
            if scheme.lower() == "bearer" and token.strip():
                return token.strip()
    return None


async def authenticate(headers: Optional[dict]) -> AuthenticatedUser:
    """Resolve the caller from the request headers or raise AuthenticationError."""
    token = extract_bearer_token(headers)
    if not token:
        raise AuthenticationError("Access token required")

    async with SupabaseClient() as client:
        try:
            response = client.auth.get_user(token)
        except Exception as e:
            logger.info("Token rejected", token=mask_token(token), error=str(e))
            raise AuthenticationError("Invalid or expired access token")

    user = getattr(response, "user", None)
    if user is None:
        raise AuthenticationError("Invalid or expired access token")

    metadata = getattr(user, "user_metadata", None) or {}
    return AuthenticatedUser(
        id=str(user.id),
        email=getattr(user, "email", None),
        name=metadata.get("name") or metadata.get("full_name"),
    )
