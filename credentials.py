from functools import lru_cache

import bcrypt

from errors import CredentialError


@lru_cache(maxsize=4)
def _placeholder_digest(rounds: int) -> bytes:
    return bcrypt.hashpw(b"placeholder-password", bcrypt.gensalt(rounds=rounds))


class PasswordHasher:
    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, password: str) -> str:
        try:
            digest = bcrypt.hashpw(
                password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)
            )
        except (TypeError, ValueError) as exc:
            raise CredentialError("Password could not be hashed") from exc
        return digest.decode("utf-8")

    def verify(self, password: str, digest: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), digest.encode("utf-8"))
        except (TypeError, ValueError) as exc:
            raise CredentialError("Stored digest could not be checked") from exc

    def verify_placeholder(self, password: str) -> None:
        """Spend one verification's worth of work when there is no digest to check."""
        # bcrypt only reads the first 72 bytes
        bcrypt.checkpw(password.encode("utf-8")[:72], _placeholder_digest(self.rounds))
