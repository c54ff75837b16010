# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, g

from .errors import AuthenticationError, ValidationError
from .permissions import Role
from .responses import error_response, fail
from .services import auth_service, security_service
from .services.access_policy import Principal


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _load_identity(token: str) -> None:
    user = auth_service.user_from_access_token(token)
    g.current_user = user
    g.principal = Principal.from_user(user)


def _is_authenticated() -> bool:
    return getattr(g, "current_user", None) is not None


def require_auth(f):
    """
    Require a valid Bearer access token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.principal: Principal(id, role) used by the access policy

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return fail("Authentication required", 401, code="UNAUTHORIZED")

        try:
            _load_identity(token)
        except AuthenticationError as e:
            return error_response(e)

        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """
    Attach the caller's identity when a valid token is sent.

    Anonymous callers get g.current_user = None; a malformed or expired
    token is still rejected with 401.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = None
        g.principal = None
        token = _bearer_token()
        if token:
            try:
                _load_identity(token)
            except AuthenticationError as e:
                return error_response(e)
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: Role):
    """
    Require one of the given roles.

    Denials are written to security_events.
    """
    allowed = {Role.parse(r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return fail("Authentication required", 401, code="UNAUTHORIZED")

            principal = g.principal
            if principal.role not in allowed:
                security_service.log_security_event(
                    user_id=principal.id,
                    event_type="ACCESS_DENIED",
                    success=False,
                    resource=request.path,
                    action=request.method,
                    reason=f"role {principal.role.value} not in {sorted(r.value for r in allowed)}",
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    commit=True,
                )
                return fail(
                    "Insufficient permissions",
                    403,
                    code="FORBIDDEN",
                    errors={"required_roles": sorted(r.value for r in allowed)},
                )

            return f(*args, **kwargs)

        return decorated_function
    return decorator


require_admin = require_role(Role.ADMIN)


def get_json_body() -> dict:
    """Request JSON as a dict (empty when no body was sent)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
