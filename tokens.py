import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings
from errors import InvalidToken, TokenExpired

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenService:
    """Issues and verifies signed access/refresh tokens.

    Each token class has its own secret and salt, so a token of one class never
    verifies as the other. Payloads carry the user id (``sub``), an absolute
    expiry in epoch seconds (``exp``) and a random nonce (``jti``).
    """

    ACCESS_SALT = "access-token"
    REFRESH_SALT = "refresh-token"

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Optional[Clock] = None,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh secrets must differ")
        self._access = URLSafeSerializer(access_secret, salt=self.ACCESS_SALT)
        self._refresh = URLSafeSerializer(refresh_secret, salt=self.REFRESH_SALT)
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock or system_clock

    @classmethod
    def from_settings(cls, clock: Optional[Clock] = None) -> "TokenService":
        settings = get_settings()
        return cls(
            settings.access_token_secret,
            settings.refresh_token_secret,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_ttl_days),
            clock=clock,
        )

    def _now(self) -> int:
        return int(self.clock().timestamp())

    def issue(self, user_id: str) -> TokenPair:
        now = self._now()
        access = self._access.dumps(
            {
                "sub": user_id,
                "exp": now + int(self.access_ttl.total_seconds()),
                "jti": secrets.token_urlsafe(8),
            }
        )
        refresh = self._refresh.dumps(
            {
                "sub": user_id,
                "exp": now + int(self.refresh_ttl.total_seconds()),
                "jti": secrets.token_urlsafe(8),
            }
        )
        return TokenPair(access_token=access, refresh_token=refresh)

    def verify_access(self, token: str) -> str:
        return self._verify(self._access, token)

    def verify_refresh(self, token: str) -> str:
        return self._verify(self._refresh, token)

    def _verify(self, serializer: URLSafeSerializer, token: str) -> str:
        if not token:
            raise InvalidToken("Token required")
        try:
            data = serializer.loads(token)
        except BadSignature as exc:
            raise InvalidToken("Invalid token") from exc

        if not isinstance(data, dict):
            raise InvalidToken("Invalid token")
        user_id = data.get("sub")
        expiry = data.get("exp")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidToken("Invalid token")
        if not isinstance(expiry, int) or isinstance(expiry, bool):
            raise InvalidToken("Invalid token")

        if self._now() > expiry:
            raise TokenExpired("Token expired")
        return user_id
