"""Request gate: ``Authorization: Bearer <token>`` to an authenticated user id.

The id returned here is the only owner value the query and expense services
ever see.
"""

from typing import Optional

from errors import TokenError, Unauthenticated
from tokens import TokenService


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthenticated()
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise Unauthenticated()
    return token


def authenticate(authorization: Optional[str], tokens: TokenService) -> int:
    token = bearer_token(authorization)
    try:
        return tokens.verify(token)
    except TokenError as exc:
        raise Unauthenticated() from exc
