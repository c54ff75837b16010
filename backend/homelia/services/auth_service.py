# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every order, quote and status change must be attributable. Uses bcrypt
for password hashing and JWT (python-jose) for stateless access tokens.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Access tokens are short-lived JWTs carrying user id and role
- Refresh tokens are JWTs whose SHA-256 hash is stored on the user row;
  they rotate on every refresh and are cleared on logout
- Self-registration can never create an ADMIN
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta

import bcrypt
from flask import current_app
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError

from ..errors import AuthenticationError, ConflictError, Forbidden, NotFound, ValidationError
from ..extensions import db
from ..models import User
from ..permissions import SELF_REGISTRATION_ROLES, Role
from ..time_utils import utcnow
from ..validation import GSTIN_PATTERN, require_text
from . import notification_service, security_service


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises ValidationError (field "password") if requirements not met.
    """
    def _fail(message: str):
        raise ValidationError(message, errors={"password": message})

    if not isinstance(password, str) or len(password) < 8:
        _fail("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        _fail("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        _fail("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        _fail("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        _fail("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes simply fail."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def normalize_email(email) -> str:
    value = require_text(email, "email", max_length=255).lower()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError("Invalid email address", errors={"email": "invalid"})
    return value


def _validate_gstin(gst_number):
    if gst_number in (None, ""):
        return None
    value = str(gst_number).strip().upper()
    if not re.match(GSTIN_PATTERN, value):
        raise ValidationError("Invalid GST number", errors={"gst_number": "invalid format"})
    return value


def _validate_state_code(state_code):
    if state_code in (None, ""):
        return None
    value = str(state_code).strip()
    if not re.fullmatch(r"\d{2}", value):
        raise ValidationError("state_code must be two digits", errors={"state_code": "must be two digits"})
    return value


# =============================================================================
# TOKENS
# =============================================================================

def _encode(user: User, token_type: str, expires: timedelta) -> str:
    now = utcnow()
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "type": token_type,
        "iat": now,
        "exp": now + expires,
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET"],
        algorithm=current_app.config["JWT_ALGORITHM"],
    )


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> dict:
    """Decode and verify a JWT; raises AuthenticationError on any problem."""
    try:
        payload = jwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=[current_app.config["JWT_ALGORITHM"]],
        )
    except JWTError:
        raise AuthenticationError("Invalid or expired token") from None

    if payload.get("type") != expected_type:
        raise AuthenticationError("Invalid token type")
    try:
        payload["user_id"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token subject") from None
    return payload


def issue_tokens(user: User) -> TokenPair:
    """Mint a new access/refresh pair and store the refresh hash (caller commits)."""
    access_minutes = current_app.config["JWT_ACCESS_EXPIRES_MINUTES"]
    access = _encode(user, ACCESS_TOKEN, timedelta(minutes=access_minutes))
    refresh = _encode(user, REFRESH_TOKEN, timedelta(days=current_app.config["JWT_REFRESH_EXPIRES_DAYS"]))
    user.refresh_token_hash = hash_token(refresh)
    return TokenPair(access_token=access, refresh_token=refresh, expires_in=access_minutes * 60)


def user_from_access_token(token: str) -> User:
    payload = decode_token(token, ACCESS_TOKEN)
    user = db.session.get(User, payload["user_id"])
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")
    return user


# =============================================================================
# ACCOUNT OPERATIONS
# =============================================================================

def create_user(
    *,
    email: str,
    password: str,
    name: str,
    role: Role | str = Role.RETAIL_CUSTOMER,
    phone: str | None = None,
    company_name: str | None = None,
    gst_number: str | None = None,
    state_code: str | None = None,
    is_verified: bool = False,
) -> User:
    """
    Create a user (caller commits).

    Email must be unique (case-insensitive) or ConflictError is raised.
    """
    email = normalize_email(email)
    try:
        role = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(str(exc), errors={"role": "invalid"}) from None

    existing = db.session.query(User).filter_by(email=email).first()
    if existing:
        raise ConflictError("Email already registered", errors={"email": "already registered"})

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=require_text(name, "name", max_length=128),
        role=role.value,
        phone=(phone or "").strip() or None,
        company_name=(company_name or "").strip() or None,
        gst_number=_validate_gstin(gst_number),
        state_code=_validate_state_code(state_code),
        is_verified=is_verified,
    )
    db.session.add(user)
    try:
        db.session.flush()
    except IntegrityError:
        raise ConflictError("Email already registered", errors={"email": "already registered"}) from None
    return user


def register(payload: dict) -> tuple[User, TokenPair]:
    """
    Self-registration.

    Role defaults to RETAIL_CUSTOMER; B2B_CUSTOMER and DEALER may be
    requested, ADMIN never.
    """
    requested = payload.get("role") or Role.RETAIL_CUSTOMER.value
    try:
        role = Role.parse(requested)
    except ValueError as exc:
        raise ValidationError(str(exc), errors={"role": "invalid"}) from None
    if role not in SELF_REGISTRATION_ROLES:
        raise ValidationError("This role cannot be self-registered", errors={"role": "not allowed"})

    user = create_user(
        email=payload.get("email"),
        password=payload.get("password"),
        name=payload.get("name"),
        role=role,
        phone=payload.get("phone"),
        company_name=payload.get("company_name"),
        gst_number=payload.get("gst_number"),
        state_code=payload.get("state_code"),
    )
    tokens = issue_tokens(user)
    security_service.log_security_event(
        user_id=user.id,
        event_type="USER_REGISTERED",
        success=True,
        resource=f"user:{user.id}",
        reason=f"role={user.role}",
    )
    notification_service.notify_new_user(user)
    db.session.commit()
    current_app.logger.info("User %s registered as %s", user.id, user.role)
    return user, tokens


def login(email: str, password: str, *, ip_address: str | None = None, user_agent: str | None = None) -> tuple[User, TokenPair]:
    """
    Authenticate by email + password.

    Failed attempts are written to security_events; an inactive account is
    Forbidden even with correct credentials.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")

    email = str(email).strip().lower()
    user = db.session.query(User).filter_by(email=email).first()

    if user is None or not verify_password(password, user.password_hash):
        security_service.log_security_event(
            user_id=user.id if user else None,
            event_type="LOGIN_FAILED",
            success=False,
            reason="invalid credentials",
            ip_address=ip_address,
            user_agent=user_agent,
            commit=True,
        )
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        security_service.log_security_event(
            user_id=user.id,
            event_type="LOGIN_FAILED",
            success=False,
            reason="account deactivated",
            ip_address=ip_address,
            user_agent=user_agent,
            commit=True,
        )
        raise Forbidden("Account is deactivated")

    user.last_login_at = utcnow()
    tokens = issue_tokens(user)
    security_service.log_security_event(
        user_id=user.id,
        event_type="LOGIN_SUCCEEDED",
        success=True,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.commit()
    return user, tokens


def refresh_tokens(refresh_token: str) -> tuple[User, TokenPair]:
    """Rotate: the presented refresh token must match the stored hash."""
    if not refresh_token:
        raise ValidationError("refresh_token is required", errors={"refresh_token": "required"})

    payload = decode_token(refresh_token, REFRESH_TOKEN)
    user = db.session.get(User, payload["user_id"])
    if user is None or not user.is_active:
        raise AuthenticationError("Invalid refresh token")
    if not user.refresh_token_hash or user.refresh_token_hash != hash_token(refresh_token):
        raise AuthenticationError("Refresh token has been revoked")

    tokens = issue_tokens(user)
    db.session.commit()
    return user, tokens


def logout(user: User) -> None:
    user.refresh_token_hash = None
    db.session.commit()


def get_profile(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


PROFILE_FIELDS = {"name", "phone", "company_name", "gst_number", "state_code"}


def update_profile(user: User, payload: dict) -> User:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(payload) - PROFILE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Field not allowed: {unknown[0]}",
            errors={field: "not allowed" for field in unknown},
        )

    if "name" in payload:
        user.name = require_text(payload["name"], "name", max_length=128)
    if "phone" in payload:
        user.phone = (payload["phone"] or "").strip() or None
    if "company_name" in payload:
        user.company_name = (payload["company_name"] or "").strip() or None
    if "gst_number" in payload:
        user.gst_number = _validate_gstin(payload["gst_number"])
    if "state_code" in payload:
        user.state_code = _validate_state_code(payload["state_code"])

    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    # Existing refresh tokens stop working
    user.refresh_token_hash = None
    security_service.log_security_event(
        user_id=user.id,
        event_type="PASSWORD_CHANGED",
        success=True,
        resource=f"user:{user.id}",
    )
    db.session.commit()
