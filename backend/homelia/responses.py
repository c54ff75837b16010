# Overview: JSON envelope helpers and app-wide error handlers.

from __future__ import annotations

import math

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import DomainError
from .extensions import db


def ok(data=None, *, message: str | None = None, status: int = 200, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def fail(message: str, status: int, *, code: str | None = None, errors: dict | None = None):
    body = {"success": False, "message": message}
    if code:
        body["code"] = code
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def error_response(exc: DomainError):
    return fail(exc.message, exc.status_code, code=exc.code, errors=exc.errors)


def pagination_params(default_limit: int = 20) -> tuple[int, int]:
    """Read ?page=&limit= (page >= 1, limit clamped to 1..100)."""
    try:
        page = int(request.args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(request.args.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    return max(1, page), min(100, max(1, limit))


def paginated(items: list, total: int, page: int, limit: int, **extra):
    total_pages = math.ceil(total / limit) if limit else 0
    return ok(
        items,
        pagination={
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
        **extra,
    )


def register_error_handlers(app) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(exc: DomainError):
        db.session.rollback()
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        if exc.code == 404:
            return fail(f"Route {request.method} {request.path} not found", 404, code="ROUTE_NOT_FOUND")
        return fail(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return fail("An unexpected error occurred", 500, code="INTERNAL_ERROR")
