# Overview: Service-layer operations for sample requests; encapsulates business logic and database work.

"""
Sample requests are free physical swatches. Guests may request them too,
in which case customer_id stays null and only admins can see the request.

Limits: at most 2 samples of any one product, 10 in total per request.

State machine (admin moves status):
    REQUESTED  -> DISPATCHED | CANCELLED
    DISPATCHED -> DELIVERED
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from ..errors import IllegalTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Product, SampleRequest, SampleRequestItem
from ..permissions import Action
from ..validation import require_address, require_items, require_positive_int, require_text
from . import access_policy, notification_service, sequence_service
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import DocumentType


MAX_PER_PRODUCT = 2
MAX_TOTAL_SAMPLES = 10

REQUESTED = "REQUESTED"
DISPATCHED = "DISPATCHED"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

SAMPLE_STATUSES = (REQUESTED, DISPATCHED, DELIVERED, CANCELLED)

SAMPLE_TRANSITIONS = {
    REQUESTED: {DISPATCHED, CANCELLED},
    DISPATCHED: {DELIVERED},
    DELIVERED: set(),
    CANCELLED: set(),
}


def _collect_items(items: list[dict]) -> "OrderedDict[int, int]":
    quantities: OrderedDict[int, int] = OrderedDict()
    for index, item in enumerate(items):
        field = f"items[{index}]"
        product_id = require_positive_int(item.get("product_id"), f"{field}.product_id")
        quantity = require_positive_int(item.get("quantity", 1), f"{field}.quantity")
        quantities[product_id] = quantities.get(product_id, 0) + quantity

    for product_id, quantity in quantities.items():
        if quantity > MAX_PER_PRODUCT:
            raise ValidationError(
                f"At most {MAX_PER_PRODUCT} samples per product",
                errors={f"product:{product_id}": f"max {MAX_PER_PRODUCT}"},
            )
    if sum(quantities.values()) > MAX_TOTAL_SAMPLES:
        raise ValidationError(
            f"At most {MAX_TOTAL_SAMPLES} samples per request",
            errors={"items": f"max {MAX_TOTAL_SAMPLES} samples"},
        )
    return quantities


def create_sample_request(payload: dict, customer=None) -> SampleRequest:
    """Guest or signed-in sample request; contact details default from the account."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    quantities = _collect_items(require_items(payload.get("items")))
    name = require_text(payload.get("name") or getattr(customer, "name", None), "name", max_length=128)
    email = require_text(payload.get("email") or getattr(customer, "email", None), "email", max_length=255).lower()
    phone = require_text(payload.get("phone") or getattr(customer, "phone", None), "phone", max_length=32)
    company_name = payload.get("company_name") or getattr(customer, "company_name", None)
    address = require_address(payload.get("address"), "address")
    customer_id = customer.id if customer is not None else None

    def _op() -> SampleRequest:
        sample_items = []
        for product_id, quantity in quantities.items():
            product = db.session.get(Product, product_id)
            if product is None or not product.is_active:
                raise ValidationError(f"Product {product_id} is not available", errors={f"product:{product_id}": "not available"})
            sample_items.append(SampleRequestItem(product_id=product_id, quantity=quantity))

        sample = SampleRequest(
            request_number=sequence_service.allocate(DocumentType.SAMPLE),
            customer_id=customer_id,
            name=name,
            email=email,
            phone=phone,
            company_name=company_name,
            address=address,
            status=REQUESTED,
            items=sample_items,
        )
        db.session.add(sample)
        db.session.flush()
        notification_service.notify_sample_request(sample)
        db.session.commit()
        return sample

    sample = run_with_retry(_op)
    current_app.logger.info("Sample request %s created", sample.request_number)
    return sample


def _load_sample(sample_id: int, *, for_update: bool = False) -> SampleRequest:
    q = db.session.query(SampleRequest).filter(SampleRequest.id == sample_id)
    if for_update:
        q = lock_for_update(q)
    sample = q.first()
    if sample is None:
        raise NotFound("Sample request not found")
    return sample


def update_status(sample_id: int, target_status, actor) -> SampleRequest:
    target = str(target_status or "").strip().upper()
    if target not in SAMPLE_STATUSES:
        raise ValidationError(
            f"Invalid sample status '{target_status}'",
            errors={"status": "must be one of " + ", ".join(SAMPLE_STATUSES)},
        )
    principal = access_policy.as_principal(actor)

    def _op() -> SampleRequest:
        sample = _load_sample(sample_id, for_update=True)
        access_policy.require_access(principal, sample, Action.UPDATE_STATUS)
        if target not in SAMPLE_TRANSITIONS[sample.status]:
            raise IllegalTransition(f"Cannot move sample request {sample.request_number} from {sample.status} to {target}")
        sample.status = target
        db.session.commit()
        return sample

    return run_with_retry(_op)


def get_sample(sample_id: int, actor) -> SampleRequest:
    sample = _load_sample(sample_id)
    access_policy.require_access(actor, sample, Action.READ)
    return sample


def list_samples(actor, *, status: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[SampleRequest], int]:
    principal = access_policy.as_principal(actor)
    q = db.session.query(SampleRequest)
    if not principal.is_admin:
        q = q.filter(SampleRequest.customer_id == principal.id)
    if status:
        q = q.filter(SampleRequest.status == str(status).strip().upper())
    total = q.count()
    rows = (
        q.order_by(SampleRequest.created_at.desc(), SampleRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
