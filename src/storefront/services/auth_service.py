import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError
from sqlalchemy import select
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from storefront.config import SecurityConfig
from storefront.exceptions import ConflictError, ForbiddenError, UnauthorizedError
from storefront.models import User

logger = logging.getLogger(__name__)


class TokenService:
    """Issues and verifies HS256 access tokens."""

    def __init__(self, security: SecurityConfig):
        self.security = security

    def create_access_token(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(hours=self.security.jwt_expiration_hours))
        claims = {
            "sub": str(user.id),
            "is_admin": bool(user.is_admin),
            "iat": int(now.timestamp()),
            "exp": expire,
        }
        return jwt.encode(claims, self.security.jwt_secret_key, algorithm=self.security.jwt_algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        """Return the token claims or raise UnauthorizedError."""
        try:
            payload = jwt.decode(token, self.security.jwt_secret_key, algorithms=[self.security.jwt_algorithm])
        except ExpiredSignatureError:
            raise UnauthorizedError("Token expired", "TOKEN_EXPIRED")
        except JWTError:
            raise UnauthorizedError("Invalid token", "INVALID_TOKEN")
        if not payload.get("sub"):
            raise UnauthorizedError("Invalid token format: no user ID", "INVALID_TOKEN")
        return payload


class AuthService:

    def __init__(self, session: Session, tokens: TokenService):
        self.session = session
        self.tokens = tokens

    @staticmethod
    def hash_password(password: str) -> str:
        return generate_password_hash(password)

    @staticmethod
    def verify_password(user: User, password: str) -> bool:
        # Social accounts have no local password to compare against
        if user.provider != "local" or not user.hashed_password:
            return False
        return check_password_hash(user.hashed_password, password)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email.strip().lower()))

    def register(self, data: Dict[str, Any]) -> User:
        email = data["email"].strip().lower()
        if self.get_by_email(email):
            raise ConflictError("User already exists", conflict_field="email")

        user = User(
            first_name=data["first_name"].strip(),
            last_name=data["last_name"].strip(),
            email=email,
            hashed_password=self.hash_password(data["password"]),
            phone_number=data.get("phone_number"),
            role="customer",
            is_admin=False,
            provider="local",
        )
        self.session.add(user)
        self.session.flush()
        logger.info(f"Registered user {user.id} ({email})")
        return user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.get_by_email(email)
        if not user or not self.verify_password(user, password):
            logger.info(f"Failed login for {email}")
            raise UnauthorizedError("Invalid email or password", "INVALID_CREDENTIALS")
        if not user.is_active:
            raise ForbiddenError("Account is disabled")
        return {"token": self.tokens.create_access_token(user), "user": user.to_dict()}

    def user_from_token(self, token: str) -> User:
        payload = self.tokens.decode(token)
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError):
            raise UnauthorizedError("Invalid token format: no user ID", "INVALID_TOKEN")
        user = self.session.get(User, user_id)
        if user is None:
            raise UnauthorizedError("User not found", "USER_NOT_FOUND")
        if not user.is_active:
            raise ForbiddenError("Account is disabled")
        return user
