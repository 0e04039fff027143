# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, request

from .responses import error
from .services import session_service
from .services.directory_service import Actor


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'actor')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.actor: Actor(user_id, role, branch_id) handed to the services
    - g.session_context: The full SessionContext object

    Returns 401 if the Authorization header is missing, or the token is
    invalid, expired, idle-revoked or belongs to a deactivated account.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return error("Authentication required", 401)

        context = session_service.validate_session(token)
        if not context:
            return error("Invalid or expired token", 401)

        g.current_user = context.user
        g.actor = Actor.from_user(context.user)
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Restrict a route to the given roles. Must sit below @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return error("Authentication required", 401)

            if g.actor.role not in roles:
                return error(
                    "You do not have permission to perform this action",
                    403,
                    details={"required_roles": list(roles)},
                )

            return f(*args, **kwargs)

        return decorated_function

    return decorator
