"""
Unit tests for SubscriptionService event reconciliation
"""
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from crud.subscription import SubscriptionRepository
from database_models import Subscription
from models.billing_events import parse_billing_event
from services.subscription_service import SubscriptionService
from tests.conftest import stripe_event


def make_service(db, repo=None):
    return SubscriptionService(db, repo or SubscriptionRepository(db))


async def all_rows(db):
    result = await db.execute(select(Subscription).order_by(Subscription.id))
    return result.scalars().all()


def snapshot(row):
    return {
        "user_id": row.user_id,
        "stripe_customer_id": row.stripe_customer_id,
        "stripe_subscription_id": row.stripe_subscription_id,
        "tier": row.tier,
        "status": row.status,
    }


def checkout_completed(user_id="user-1", customer="cus_1", subscription="sub_1"):
    return parse_billing_event(stripe_event("checkout.session.completed", {
        "id": "cs_test_1",
        "object": "checkout.session",
        "customer": customer,
        "subscription": subscription,
        "metadata": {"userId": user_id},
    }))


def subscription_event(event_type, status, customer="cus_1", subscription="sub_1", metadata=None):
    return parse_billing_event(stripe_event(event_type, {
        "id": subscription,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "metadata": metadata or {},
    }))


class FailingSubscriptionRepository(SubscriptionRepository):
    async def upsert_for_user(self, user_id, values):
        raise OperationalError("INSERT INTO subscriptions", {}, Exception("database is down"))


@pytest.mark.asyncio
async def test_checkout_completed_creates_pro_row(test_db):
    result = await make_service(test_db).apply_event(checkout_completed())

    assert result["is_error"] is False
    assert result["data"]["outcome"] == "applied"
    rows = await all_rows(test_db)
    assert [snapshot(row) for row in rows] == [{
        "user_id": "user-1",
        "stripe_customer_id": "cus_1",
        "stripe_subscription_id": "sub_1",
        "tier": "pro",
        "status": "active",
    }]


@pytest.mark.asyncio
async def test_checkout_completed_is_idempotent(test_db):
    service = make_service(test_db)

    await service.apply_event(checkout_completed())
    once = [snapshot(row) for row in await all_rows(test_db)]
    await service.apply_event(checkout_completed())
    twice = [snapshot(row) for row in await all_rows(test_db)]

    assert once == twice
    assert len(twice) == 1


@pytest.mark.asyncio
async def test_checkout_completed_upgrades_existing_free_row(test_db):
    await SubscriptionRepository(test_db).upsert_for_user("user-1", {"tier": "free", "status": "canceled"})
    await test_db.commit()

    await make_service(test_db).apply_event(checkout_completed())

    rows = await all_rows(test_db)
    assert len(rows) == 1
    assert (rows[0].tier, rows[0].status) == ("pro", "active")


@pytest.mark.asyncio
async def test_checkout_without_user_id_is_acknowledged_without_writes(test_db):
    event = parse_billing_event(stripe_event("checkout.session.completed", {
        "id": "cs_test_2", "customer": "cus_9", "subscription": "sub_9", "metadata": {},
    }))

    result = await make_service(test_db).apply_event(event)

    assert result["is_error"] is False
    assert result["data"]["outcome"] == "unknown_reference"
    assert await all_rows(test_db) == []


@pytest.mark.asyncio
async def test_subscription_updated_active_sets_pro(test_db):
    await SubscriptionRepository(test_db).upsert_for_user(
        "user-1", {"stripe_customer_id": "cus_1", "tier": "free", "status": "incomplete"}
    )
    await test_db.commit()
    event = parse_billing_event(stripe_event("customer.subscription.updated", {
        "customer": "cus_1",
        "status": "active",
    }))

    await make_service(test_db).apply_event(event)

    row = (await all_rows(test_db))[0]
    assert (row.tier, row.status) == ("pro", "active")


@pytest.mark.asyncio
@pytest.mark.parametrize("status,tier", [
    ("trialing", "pro"),
    ("past_due", "free"),
    ("unpaid", "free"),
    ("incomplete_expired", "free"),
    ("canceled", "free"),
])
async def test_subscription_updated_derives_tier_from_status(test_db, status, tier):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())

    await service.apply_event(subscription_event("customer.subscription.updated", status))

    row = (await all_rows(test_db))[0]
    assert (row.tier, row.status) == (tier, status)


@pytest.mark.asyncio
async def test_subscription_updated_matches_on_subscription_id(test_db):
    service = make_service(test_db)
    await service.apply_event(checkout_completed(customer="cus_1", subscription="sub_1"))

    await service.apply_event(subscription_event("customer.subscription.updated", "past_due", customer="cus_other"))

    rows = await all_rows(test_db)
    assert len(rows) == 1
    assert rows[0].status == "past_due"
    assert rows[0].stripe_customer_id == "cus_other"


@pytest.mark.asyncio
async def test_subscription_created_for_unknown_customer_is_dropped(test_db):
    result = await make_service(test_db).apply_event(
        subscription_event("customer.subscription.created", "active", customer="cus_unknown", subscription="sub_x")
    )

    assert result["is_error"] is False
    assert result["data"]["outcome"] == "unknown_reference"
    assert await all_rows(test_db) == []


@pytest.mark.asyncio
async def test_subscription_created_with_user_metadata_creates_row(test_db):
    await make_service(test_db).apply_event(subscription_event(
        "customer.subscription.created", "trialing",
        customer="cus_2", subscription="sub_2", metadata={"user_id": "user-2"},
    ))

    rows = await all_rows(test_db)
    assert [snapshot(row) for row in rows] == [{
        "user_id": "user-2",
        "stripe_customer_id": "cus_2",
        "stripe_subscription_id": "sub_2",
        "tier": "pro",
        "status": "trialing",
    }]


@pytest.mark.asyncio
async def test_deleted_after_created_cancels(test_db):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())
    await service.apply_event(subscription_event("customer.subscription.created", "active"))
    await service.apply_event(subscription_event("customer.subscription.updated", "trialing"))

    await service.apply_event(subscription_event("customer.subscription.deleted", "canceled"))

    rows = await all_rows(test_db)
    assert len(rows) == 1
    assert (rows[0].tier, rows[0].status) == ("free", "canceled")


@pytest.mark.asyncio
async def test_deleted_event_uses_canceled_even_if_payload_status_differs(test_db):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())

    await service.apply_event(subscription_event("customer.subscription.deleted", "active"))

    row = (await all_rows(test_db))[0]
    assert (row.tier, row.status) == ("free", "canceled")


@pytest.mark.asyncio
async def test_deleted_unknown_subscription_is_acknowledged(test_db):
    result = await make_service(test_db).apply_event(
        subscription_event("customer.subscription.deleted", "canceled", subscription="sub_missing")
    )

    assert result["is_error"] is False
    assert result["data"]["outcome"] == "unknown_reference"


@pytest.mark.asyncio
async def test_last_processed_event_wins(test_db):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())

    # An older "created" event delivered after a newer "updated" one still overwrites it
    await service.apply_event(subscription_event("customer.subscription.updated", "past_due"))
    await service.apply_event(subscription_event("customer.subscription.created", "active"))

    row = (await all_rows(test_db))[0]
    assert (row.tier, row.status) == ("pro", "active")


@pytest.mark.asyncio
async def test_invoice_payment_succeeded_sets_status_only(test_db):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())
    await service.apply_event(subscription_event("customer.subscription.updated", "past_due"))

    await service.apply_event(parse_billing_event(stripe_event("invoice.payment_succeeded", {
        "id": "in_1", "customer": "cus_1", "subscription": "sub_1",
    })))

    row = (await all_rows(test_db))[0]
    assert (row.tier, row.status) == ("free", "active")


@pytest.mark.asyncio
async def test_payment_succeeded_after_delete_keeps_free_tier(test_db):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())
    await service.apply_event(subscription_event("customer.subscription.deleted", "canceled"))

    await service.apply_event(parse_billing_event(stripe_event("invoice.payment_succeeded", {
        "id": "in_late", "customer": "cus_1", "subscription": "sub_1",
    })))

    row = (await all_rows(test_db))[0]
    assert (row.tier, row.status) == ("free", "active")
    assert await service.get_user_tier("user-1") == "free"


@pytest.mark.asyncio
async def test_payment_intent_succeeded_uses_metadata_reference(test_db):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())
    await service.apply_event(subscription_event("customer.subscription.updated", "incomplete"))

    await service.apply_event(parse_billing_event(stripe_event("payment_intent.succeeded", {
        "id": "pi_1", "metadata": {"subscriptionId": "sub_1"},
    })))

    row = (await all_rows(test_db))[0]
    assert row.status == "active"


@pytest.mark.asyncio
async def test_payment_succeeded_without_reference_is_ignored(test_db):
    result = await make_service(test_db).apply_event(parse_billing_event(stripe_event("payment_intent.succeeded", {
        "id": "pi_2", "metadata": {},
    })))

    assert result["data"]["outcome"] == "ignored"
    assert await all_rows(test_db) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type", ["invoice.payment_failed", "payment_intent.payment_failed"])
async def test_payment_failed_never_mutates(test_db, event_type):
    service = make_service(test_db)
    await service.apply_event(checkout_completed())
    before = [snapshot(row) for row in await all_rows(test_db)]

    result = await service.apply_event(parse_billing_event(stripe_event(event_type, {
        "id": "in_2", "customer": "cus_1", "subscription": "sub_1", "metadata": {"subscriptionId": "sub_1"},
    })))

    assert result["data"]["outcome"] == "ignored"
    assert [snapshot(row) for row in await all_rows(test_db)] == before


@pytest.mark.asyncio
async def test_unknown_event_type_is_ignored(test_db):
    result = await make_service(test_db).apply_event(parse_billing_event(stripe_event("customer.created", {
        "id": "cus_3",
    })))

    assert result == {"data": {"outcome": "ignored", "event_type": "customer.created"}, "is_error": False}


@pytest.mark.asyncio
async def test_store_failure_is_reported_as_error(test_db):
    service = make_service(test_db, FailingSubscriptionRepository(test_db))

    result = await service.apply_event(checkout_completed())

    assert result["is_error"] is True
    assert await all_rows(test_db) == []


@pytest.mark.asyncio
async def test_get_user_tier(test_db):
    service = make_service(test_db)
    assert await service.get_user_tier("nobody") == "free"

    await service.apply_event(checkout_completed())
    assert await service.get_user_tier("user-1") == "pro"

    await service.apply_event(subscription_event("customer.subscription.updated", "unpaid"))
    assert await service.get_user_tier("user-1") == "free"
