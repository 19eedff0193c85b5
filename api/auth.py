"""
Bearer-token dependency for protected routes.

No Authorization header (or no token after "Bearer") answers 401; a token
that fails verification answers 403.
"""

from fastapi import Request

from utils.errors import ForbiddenError, UnauthorizedError


async def get_current_user_id(request: Request) -> int:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Access token required")

    claims = request.app.state.services.security.decode_access_token(token.strip())
    try:
        return int(claims["user_id"])
    except (TypeError, ValueError):
        raise ForbiddenError("Invalid token") from None
