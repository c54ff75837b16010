# Overview: Sample request API routes (guests may submit).

from flask import Blueprint, request, g

from ..decorators import get_json_body, optional_auth, require_admin, require_auth
from ..responses import ok, paginated, pagination_params
from ..services import sample_service


samples_bp = Blueprint("samples", __name__, url_prefix="/api/samples")


@samples_bp.post("")
@optional_auth
def create_sample_request():
    """
    Request body:
    {
        "name": str, "email": str, "phone": str, "company_name": str (optional),
        "address": {...},
        "items": [{"product_id": int, "quantity": 1|2}, ...]
    }

    Contact fields default from the signed-in account when omitted.
    """
    sample = sample_service.create_sample_request(get_json_body(), customer=g.current_user)
    return ok(sample.to_dict(), message="Sample request submitted", status=201)


@samples_bp.get("")
@require_auth
def list_samples():
    page, limit = pagination_params()
    rows, total = sample_service.list_samples(g.principal, status=request.args.get("status"), page=page, limit=limit)
    return paginated([s.to_dict() for s in rows], total, page, limit)


@samples_bp.get("/<int:sample_id>")
@require_auth
def get_sample(sample_id: int):
    return ok(sample_service.get_sample(sample_id, g.principal).to_dict())


@samples_bp.patch("/<int:sample_id>/status")
@require_auth
@require_admin
def update_sample_status(sample_id: int):
    sample = sample_service.update_status(sample_id, get_json_body().get("status"), g.principal)
    return ok(sample.to_dict(), message=f"Sample request {sample.status.lower()}")
