"""
Subscription API Routes
Create, inspect and cancel the caller's paid subscriptions.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from subscription_api.api.context import RequestContext, get_request_context
from subscription_api.core.exceptions import (
    BadRequest,
    InternalServerError,
    NotFound,
    PaymentProxyError,
    StoreError,
    Unauthorized,
)
from subscription_api.models import Subscription, User
from subscription_api.schemas.subscription import SubscriptionOut, SubscriptionRequest
from subscription_api.services.subscription_store import SubscriptionStore

router = APIRouter()

PERSIST_AFTER_REMOTE_MSG = "Error while saving subscription, but payment processor call was successful"


def serialize(subscription: Subscription) -> Dict[str, Any]:
    return SubscriptionOut.model_validate(subscription).model_dump(mode="json")


def _resolve_owner(ctx: RequestContext, user_id: Optional[str]) -> str:
    """Return the user whose records are addressed; only admins may name another user."""
    if not user_id or user_id == ctx.user_id:
        return ctx.user_id
    if not ctx.is_admin:
        ctx.logger.info("Non-admin attempted to access subscriptions of %s", user_id)
        raise Unauthorized("Must be an admin to access another user's subscriptions")
    return user_id


def _get_subscription(ctx: RequestContext, store: SubscriptionStore, user_id: str, sub_type: str) -> Optional[Subscription]:
    log = ctx.logger.with_fields(type=sub_type)
    try:
        subscription = store.find(user_id, sub_type)
    except StoreError as exc:
        message = f"Error while searching for subscription user {user_id} and type {sub_type}"
        log.warning("%s: %s", message, exc)
        raise InternalServerError(message)

    if subscription is None:
        log.debug("Didn't find record")
    else:
        log.debug("Successfully retrieved subscription")
    return subscription


async def get_subscription_payload(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
) -> SubscriptionRequest:
    """Decode the request body once the caller has been authenticated."""
    body = await request.body()
    try:
        return SubscriptionRequest.model_validate_json(body)
    except ValidationError as exc:
        parts = []
        for error in exc.errors():
            location = ".".join(str(p) for p in error.get("loc", ()))
            parts.append(f"{location}: {error['msg']}" if location else error["msg"])
        ctx.logger.info("Failed to decode payload")
        raise BadRequest("failed to decode payload: " + "; ".join(parts))


@router.get("")
def list_subscriptions(
    user_id: Optional[str] = Query(default=None),
    ctx: RequestContext = Depends(get_request_context),
) -> List[Dict[str, Any]]:
    owner = _resolve_owner(ctx, user_id)
    store = SubscriptionStore(ctx.db)
    try:
        subscriptions = store.list_for_user(owner)
    except StoreError as exc:
        ctx.logger.warning("Failed to find records associated with %s: %s", owner, exc)
        raise InternalServerError("DB error while searching for subscriptions")

    ctx.logger.debug("Found %d subscriptions associated with id %s", len(subscriptions), owner)
    return [serialize(s) for s in subscriptions]


@router.get("/{sub_type}")
def view_subscription(
    sub_type: str,
    user_id: Optional[str] = Query(default=None),
    ctx: RequestContext = Depends(get_request_context),
) -> Dict[str, Any]:
    owner = _resolve_owner(ctx, user_id)
    subscription = _get_subscription(ctx, SubscriptionStore(ctx.db), owner, sub_type)
    if subscription is None:
        raise NotFound("No subscription found")
    return serialize(subscription)


@router.put("/{sub_type}")
def create_or_modify_subscription(
    sub_type: str,
    ctx: RequestContext = Depends(get_request_context),
    payload: SubscriptionRequest = Depends(get_subscription_payload),
) -> Dict[str, Any]:
    missing = payload.missing_fields()
    if missing:
        raise BadRequest("Failed to provide a valid request: Missing fields: " + ",".join(missing))

    log = ctx.with_fields(plan=payload.plan, type=sub_type)
    store = SubscriptionStore(ctx.db)
    subscription = _get_subscription(ctx, store, ctx.user_id, sub_type)

    if subscription is None:
        log.debug("Starting to create new subscription")
        subscription = _create_subscription(ctx, store, sub_type, payload)
    else:
        log.with_fields(old_plan=subscription.plan).debug("Starting to update subscription")
        subscription = _update_subscription(ctx, store, subscription, payload)

    return serialize(subscription)


def _ensure_customer(ctx: RequestContext, store: SubscriptionStore, payload: SubscriptionRequest) -> User:
    log = ctx.logger
    try:
        user = store.find_user(ctx.user_id)
    except StoreError as exc:
        log.warning("Failed to look up user %s: %s", ctx.user_id, exc)
        raise InternalServerError(f"Error while searching for user {ctx.user_id}")
    if user is not None and user.remote_id:
        return user

    log.debug("Creating new customer with payment processor")
    try:
        customer_id = ctx.payer_proxy.create_customer(ctx.user_id, ctx.claims.email, payload.stripe_key)
    except PaymentProxyError as exc:
        log.info("Failed to create customer with payment processor: %s", exc)
        raise InternalServerError(f"Failed to create new customer: {exc}")

    try:
        user = store.create_user(ctx.user_id, ctx.claims.email, customer_id)
    except StoreError as exc:
        log.warning(
            "Failed to save user after successful customer creation: id=%s email=%s remote_id=%s: %s",
            ctx.user_id,
            ctx.claims.email,
            customer_id,
            exc,
        )
        raise InternalServerError(f"Failed to create new customer: {exc}")
    log.with_fields(customer_id=customer_id).info("Created new customer")
    return user


def _create_subscription(
    ctx: RequestContext, store: SubscriptionStore, sub_type: str, payload: SubscriptionRequest
) -> Subscription:
    log = ctx.logger
    user = _ensure_customer(ctx, store, payload)

    try:
        remote_id = ctx.payer_proxy.create(user.remote_id, payload.plan, payload.stripe_key)
    except PaymentProxyError as exc:
        log.info("Failed to create subscription with payment processor: %s", exc)
        raise BadRequest(f"Failed to create new subscription for plan {payload.plan}: {exc}")

    subscription = Subscription(
        remote_id=remote_id,
        user_id=ctx.user_id,
        plan=payload.plan,
        type=sub_type,
    )
    record = repr(subscription)
    try:
        store.create(subscription)
    except StoreError as exc:
        log.warning("Failed to create new subscription after successful payment processor call: %s: %s", record, exc)
        raise InternalServerError(PERSIST_AFTER_REMOTE_MSG)

    log.with_fields(remote_id=remote_id).info("Created new subscription")
    return subscription


def _update_subscription(
    ctx: RequestContext, store: SubscriptionStore, existing: Subscription, payload: SubscriptionRequest
) -> Subscription:
    log = ctx.logger
    try:
        remote_id = ctx.payer_proxy.update(existing.remote_id, payload.plan, payload.stripe_key)
    except PaymentProxyError as exc:
        log.info("Failed to update subscription with payment processor: %s", exc)
        raise BadRequest(f"Failed updating subscription {existing.remote_id} to plan {payload.plan}: {exc}")

    existing.remote_id = remote_id
    existing.plan = payload.plan
    record = repr(existing)
    try:
        store.save(existing)
    except StoreError as exc:
        log.warning("Failed to save updated subscription after successful payment processor call: %s: %s", record, exc)
        raise InternalServerError(PERSIST_AFTER_REMOTE_MSG)

    log.with_fields(remote_id=remote_id).info("Updated subscription")
    return existing


@router.delete("/{sub_type}", status_code=status.HTTP_202_ACCEPTED)
def delete_subscription(
    sub_type: str,
    ctx: RequestContext = Depends(get_request_context),
) -> JSONResponse:
    store = SubscriptionStore(ctx.db)
    subscription = _get_subscription(ctx, store, ctx.user_id, sub_type)

    if subscription is not None:
        log = ctx.with_fields(type=sub_type)
        try:
            ctx.payer_proxy.delete(subscription.remote_id)
        except PaymentProxyError as exc:
            raise BadRequest(f"Error communicating with payment processor: {exc}")
        log.info("Removed subscription from payment processor")

        record = repr(subscription)
        try:
            store.soft_delete(subscription)
        except StoreError as exc:
            log.warning("Error while deleting subscription %s: %s", record, exc)
            raise InternalServerError("Error while deleting subscription")
        log.info("Removed subscription from db")

    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={})
