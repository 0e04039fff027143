# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication service.

Every stock mutation and order transition records the acting user, so every
request must resolve to an authenticated account.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
- Non-admin users must belong to an active branch
"""

import re

import bcrypt
from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import Branch, User
from ..models.auth import ROLE_ADMIN, USER_ROLES
from ..time_utils import utcnow


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises ValidationError (field "password") if requirements not met.
    """
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long", field="password")

    if not re.search(r'[A-Z]', password):
        raise ValidationError("Password must contain at least one uppercase letter", field="password")

    if not re.search(r'[a-z]', password):
        raise ValidationError("Password must contain at least one lowercase letter", field="password")

    if not re.search(r'\d', password):
        raise ValidationError("Password must contain at least one digit", field="password")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise ValidationError("Password must contain at least one special character", field="password")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a
    mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str,
    branch_id: int | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Args:
        username: Unique username
        email: Unique email
        password: Password meeting strength requirements
        role: admin, salesperson or mechanic
        branch_id: Required for salesperson and mechanic accounts

    Raises:
        ValidationError: bad role, missing/inactive branch, weak password
        ConflictError: username or email already taken
    """
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}", field="role")

    if branch_id is None and role != ROLE_ADMIN:
        raise ValidationError("branch_id is required for non-admin users", field="branch_id")

    if branch_id is not None:
        branch = db.session.get(Branch, branch_id)
        if not branch or not branch.is_active:
            raise ValidationError("Branch not found or inactive", field="branch_id")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")

    password_hash = hash_password(password)

    user = User(
        username=username,
        email=email,
        password_hash=password_hash,
        role=role,
        branch_id=branch_id,
    )

    db.session.add(user)
    db.session.commit()
    current_app.logger.info("User %s created (role=%s, branch=%s)", username, role, branch_id)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate by username or email.

    Returns the User and stamps last_login_at on success, None otherwise.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if user.branch_id is not None and (user.branch is None or not user.branch.is_active):
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
