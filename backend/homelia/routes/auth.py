# Overview: Authentication API routes (register, login, token refresh, profile).

from flask import Blueprint, request, g

from ..decorators import get_json_body, require_auth
from ..responses import ok
from ..services import auth_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register():
    """
    Self-registration.

    Request body:
    {
        "email": str, "password": str, "name": str,
        "phone": str (optional), "company_name": str (optional),
        "gst_number": str (optional), "state_code": str (optional),
        "role": "RETAIL_CUSTOMER" | "B2B_CUSTOMER" | "DEALER" (optional)
    }

    Returns:
        201: {user, tokens}
        400: Validation error
        409: Email already registered
    """
    user, tokens = auth_service.register(get_json_body())
    return ok({"user": user.to_dict(), "tokens": tokens.to_dict()}, message="Registration successful", status=201)


@auth_bp.post("/login")
def login():
    data = get_json_body()
    user, tokens = auth_service.login(
        data.get("email"),
        data.get("password"),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    return ok({"user": user.to_dict(), "tokens": tokens.to_dict()}, message="Login successful")


@auth_bp.post("/refresh")
def refresh():
    """Rotate tokens; the old refresh token stops working."""
    data = get_json_body()
    user, tokens = auth_service.refresh_tokens(data.get("refresh_token"))
    return ok({"user": user.to_dict(), "tokens": tokens.to_dict()})


@auth_bp.post("/logout")
@require_auth
def logout():
    auth_service.logout(g.current_user)
    return ok(message="Logged out")


@auth_bp.get("/me")
@require_auth
def me():
    return ok(g.current_user.to_dict())


@auth_bp.put("/profile")
@require_auth
def update_profile():
    user = auth_service.update_profile(g.current_user, get_json_body())
    return ok(user.to_dict(), message="Profile updated")


@auth_bp.post("/change-password")
@require_auth
def change_password():
    data = get_json_body()
    auth_service.change_password(g.current_user, data.get("current_password"), data.get("new_password"))
    return ok(message="Password changed")
