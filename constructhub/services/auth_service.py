"""
Authentication service.

    - login:    bcrypt password check, Active users only, issues a token pair
    - refresh:  rotates tokens; the used refresh token is blacklisted
    - logout:   blacklists the refresh token and drops the stored one

Refresh tokens and the blacklist live in cache_service (Redis or memory).
"""

import logging
from datetime import datetime, timezone

import bcrypt
import jwt
from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, select

from constructhub.core.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from constructhub.core.roles import ROLE_VALUES, Role
from constructhub.models import db
from constructhub.models.user import USER_STATUSES, User
from constructhub.services import cache_service, jwt_service

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email: {exc}", details={"email": str(exc)}) from None


def _find_user_by_email(email: str) -> User | None:
    return db.session.execute(
        select(User).where(func.lower(User.email) == email.lower())
    ).scalar_one_or_none()


def create_user(email: str, password: str, full_name: str, role: str, status: str = "Active",
                rounds: int = BCRYPT_ROUNDS) -> User:
    """Create a user account (used by the CLI and fixtures)."""
    email = normalize_email(email)
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in ROLE_VALUES:
        raise ValidationError("Unknown role", details={"role": role})
    role = Role(role)
    if status not in USER_STATUSES:
        raise ValidationError(f"status must be one of {sorted(USER_STATUSES)}")
    if _find_user_by_email(email):
        raise ConflictError("User with this email already exists", details={"email": email})

    user = User(
        email=email,
        password_hash=hash_password(password, rounds),
        full_name=(full_name or "").strip() or email,
        role=role.value,
        status=status,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("User created id=%s role=%s", user.id, user.role)
    return user


def _issue_tokens(user: User) -> dict:
    tokens = jwt_service.generate_token_pair(user.id, user.role)
    cache_service.store_refresh_token(user.id, tokens["refresh_token"], jwt_service.get_refresh_expires())
    return tokens


def login(email: str, password: str) -> dict:
    """Return {"user", "tokens"} for valid credentials of an Active user."""
    if not email or not password:
        raise ValidationError("Email and password are required")
    user = _find_user_by_email(email.strip())
    if user is None or not check_password(password, user.password_hash):
        logger.warning("Failed login for email=%s", email)
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is not active")

    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("User logged in id=%s", user.id)
    return {"user": user, "tokens": _issue_tokens(user)}


def refresh(refresh_token: str) -> dict:
    if not refresh_token:
        raise ValidationError("refresh_token is required")
    if cache_service.is_token_blacklisted(refresh_token):
        raise AuthenticationError("Refresh token has been revoked")
    try:
        payload = jwt_service.decode_refresh_token(refresh_token)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Refresh token expired") from None
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid refresh token") from None

    user_id = int(payload["sub"])
    if cache_service.get_refresh_token(user_id) != refresh_token:
        raise AuthenticationError("Invalid refresh token")
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Account is not active")

    cache_service.blacklist_token(refresh_token, jwt_service.get_refresh_expires())
    return _issue_tokens(user)


def logout(refresh_token: str) -> None:
    if not refresh_token:
        raise ValidationError("refresh_token is required")
    cache_service.blacklist_token(refresh_token, jwt_service.get_refresh_expires())
    try:
        payload = jwt_service.decode_refresh_token(refresh_token)
    except jwt.InvalidTokenError:
        return
    cache_service.delete_refresh_token(int(payload["sub"]))
    logger.info("User logged out id=%s", payload["sub"])


def get_current_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user
