import logging
import time
from typing import Callable, Optional

from itsdangerous import BadData, URLSafeSerializer

from errors import TokenExpired, TokenMalformed

logger = logging.getLogger(__name__)


class TokenService:
    """Issues and verifies signed session tokens.

    A token is the itsdangerous-signed payload ``{"sub", "iat", "exp"}``.
    Verification depends only on the token, the secret and ``clock()``.
    """

    def __init__(
        self,
        secret: str,
        lifetime_seconds: int,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._serializer = URLSafeSerializer(secret, salt="session-token")
        self.lifetime_seconds = lifetime_seconds
        self._clock = clock or time.time

    def issue(self, user_id: int) -> str:
        issued_at = int(self._clock())
        payload = {"sub": user_id, "iat": issued_at, "exp": issued_at + self.lifetime_seconds}
        return self._serializer.dumps(payload)

    def verify(self, token: str) -> int:
        try:
            data = self._serializer.loads(token)
        except BadData as exc:
            logger.info("token_rejected: reason=malformed")
            raise TokenMalformed("Token signature is invalid") from exc

        if not isinstance(data, dict):
            raise TokenMalformed("Token payload is not an object")
        user_id = data.get("sub")
        expiry = data.get("exp")
        # bool is an int subclass; neither claim may be one
        if type(user_id) is not int or type(expiry) is not int:
            raise TokenMalformed("Token claims are missing")

        if self._clock() >= expiry:
            logger.info(f"token_rejected: reason=expired user_id={user_id}")
            raise TokenExpired("Token has expired")
        return user_id
