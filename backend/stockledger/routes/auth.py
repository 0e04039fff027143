# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/stockledger/routes/auth.py
"""
Authentication API routes.

- Login issues a bearer token (only its hash is stored)
- Logout revokes the presented token
- Accounts are created by administrators through the CLI, there is no
  self-registration
"""

from flask import Blueprint, g, request

from ..decorators import bearer_token, require_auth
from ..responses import error, success, unexpected_failure
from ..services import auth_service
from ..services import session_service
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Request body: {"username": str (or email), "password": str}

    Token must be included as "Authorization: Bearer <token>" on
    protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return error("username/email and password required", 400)

        user = auth_service.authenticate(username, password)
        if not user:
            return error("Invalid credentials", 401)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return success({
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
        }, message="Login successful")

    except Exception:
        return unexpected_failure("login user")


@auth_bp.post("/logout")
def logout_route():
    """Revoke the bearer token presented in the Authorization header."""
    try:
        token = bearer_token()
        if not token:
            return error("Authorization header required", 401)

        if not session_service.revoke_session(token, reason="User logout"):
            return error("Invalid or expired token", 401)

        return success(message="Logout successful")

    except Exception:
        return unexpected_failure("logout user")


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    data = user.to_dict()
    data["branch"] = user.branch.to_dict() if user.branch else None
    return success(data)
