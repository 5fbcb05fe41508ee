from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import (
    Conflict,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    ServiceError,
    ValidationFailed,
)
from models import User
from passwords import hash_password, verify_password
from schemas import LoginIn, PasswordChangeIn, ProfileUpdateIn, RegisterIn
from services import seed_default_categories
from tokens import TokenPair, TokenService

logger = logging.getLogger(__name__)

MAX_PASSWORD_BYTES = 72


@dataclass(frozen=True)
class AuthResult:
    user: User
    tokens: TokenPair


def normalize_email(email: str) -> str:
    return email.strip().lower()


def profile_of(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "currency": user.currency,
        "created_at": user.created_at,
    }


class AuthService:
    """Registration, login and the refresh-token session lifecycle.

    A user holds at most one live refresh token (``User.refresh_token``).
    Issuing a new pair overwrites it, which is also how older sessions are
    revoked: a refresh token that no longer matches the stored value is
    rejected.
    """

    def __init__(
        self,
        session: Session,
        tokens: Optional[TokenService] = None,
        *,
        bcrypt_rounds: Optional[int] = None,
    ) -> None:
        self.session = session
        self.tokens = tokens or TokenService.from_settings()
        self.bcrypt_rounds = bcrypt_rounds

    def _hash(self, password: str) -> str:
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationFailed("Password is too long")
        return hash_password(password, self.bcrypt_rounds)

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == normalize_email(email))
        )

    def _start_session(self, user: User) -> TokenPair:
        pair = self.tokens.issue(user.id)
        user.refresh_token = pair.refresh_token
        self.session.commit()
        return pair

    def register(self, data: RegisterIn) -> AuthResult:
        email = normalize_email(data.email)
        if self._find_by_email(email):
            raise Conflict("User already exists")

        user = User(
            email=email,
            password_hash=self._hash(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            currency=data.currency,
        )
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            logger.info("auth_register_conflict")
            raise Conflict("User already exists") from exc
        seed_default_categories(self.session, user.id)
        pair = self._start_session(user)
        self.session.refresh(user)
        logger.info(f"auth_register: user_id={user.id}")
        return AuthResult(user=user, tokens=pair)

    def login(self, data: LoginIn) -> AuthResult:
        user = self._find_by_email(data.email)
        if not user or not verify_password(data.password, user.password_hash):
            logger.info("auth_login_failed")
            raise InvalidCredentials("Invalid credentials")
        pair = self._start_session(user)
        logger.info(f"auth_login: user_id={user.id}")
        return AuthResult(user=user, tokens=pair)

    def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        if not refresh_token:
            raise InvalidToken("Refresh token required")
        try:
            user_id = self.tokens.verify_refresh(refresh_token)
        except ServiceError as exc:
            logger.info(f"auth_refresh_rejected: reason={exc.kind.value}")
            raise InvalidToken("Invalid refresh token") from exc

        user = self.session.get(User, user_id)
        if not user or user.refresh_token != refresh_token:
            logger.info(f"auth_refresh_rejected: reason=mismatch user_id={user_id}")
            raise InvalidToken("Invalid refresh token")

        pair = self._start_session(user)
        logger.info(f"auth_refresh: user_id={user.id}")
        return pair

    def logout(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            return
        try:
            user_id = self.tokens.verify_refresh(refresh_token)
        except ServiceError:
            return
        user = self.session.get(User, user_id)
        if not user or user.refresh_token != refresh_token:
            return
        user.refresh_token = None
        self.session.commit()
        logger.info(f"auth_logout: user_id={user.id}")

    def authenticate(self, access_token: Optional[str]) -> User:
        if not access_token:
            raise InvalidToken("Access token required")
        user_id = self.tokens.verify_access(access_token)
        user = self.session.get(User, user_id)
        if not user:
            raise InvalidToken("Invalid token")
        return user

    def get_user(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def update_profile(self, user_id: str, data: ProfileUpdateIn) -> User:
        user = self.get_user(user_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "first_name" in changes:
            user.first_name = changes["first_name"]
        if "last_name" in changes:
            user.last_name = changes["last_name"]
        if "currency" in changes:
            user.currency = changes["currency"]
        self.session.commit()
        self.session.refresh(user)
        return user

    def change_password(self, user_id: str, data: PasswordChangeIn) -> TokenPair:
        user = self.get_user(user_id)
        if not verify_password(data.current_password, user.password_hash):
            raise InvalidCredentials("Invalid credentials")
        user.password_hash = self._hash(data.new_password)
        # A new pair replaces the stored refresh token, revoking other sessions.
        pair = self._start_session(user)
        logger.info(f"auth_password_changed: user_id={user.id}")
        return pair
