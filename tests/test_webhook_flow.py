from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from models.base import session_scope
from models.schema import AuditLog, Invoice, Subscription, WebhookEvent
from schemas.paystack import parse_event
from services.billing_webhook import handle_event
from services.datetimex import as_utc
from tests.utils import post_webhook

UTC = timezone.utc


def _subscription(username="alice", sub_id="sub_alice", **kw):
    fields = {"plan": "free", "status": "inactive", "price_per_member": Decimal("0")}
    fields.update(kw)
    with session_scope() as s:
        s.add(Subscription(id=sub_id, user_id=username, **fields))
    return sub_id


def _invoice(sub_id, inv_id="inv_1", status="open", amount="9000.00",
             start=datetime(2025, 2, 15, tzinfo=UTC), end=datetime(2025, 3, 15, tzinfo=UTC)):
    with session_scope() as s:
        s.add(Invoice(id=inv_id, subscription_id=sub_id, status=status,
                      amount=Decimal(amount), currency="NGN",
                      billing_period_start=start, billing_period_end=end))
    return inv_id


def _sub(sub_id="sub_alice"):
    with session_scope() as s:
        sub = s.get(Subscription, sub_id)
        s.expunge(sub)
        return sub


def _inv(inv_id="inv_1"):
    with session_scope() as s:
        inv = s.get(Invoice, inv_id)
        s.expunge(inv)
        return inv


def _charge_success(metadata, reference="ref_1", subscription=None):
    data = {"reference": reference, "amount": 900000, "currency": "NGN", "metadata": metadata}
    if subscription:
        data["subscription"] = subscription
    return {"event": "charge.success", "data": data}


@pytest.mark.db
def test_new_subscription_charge_activates(client, owner):
    _subscription()
    r = post_webhook(client, _charge_success(
        {"type": "new-subscription", "user_id": "alice", "plan_id": "pro",
         "subscription_id": "sub_alice"},
        subscription={"subscription_code": "SUB_abc"}))
    assert r.status_code == 200
    assert r.get_json() == {"status": "success"}

    sub = _sub()
    assert sub.status == "active"
    assert sub.plan == "pro"
    assert sub.price_per_member == Decimal("9000.00")
    assert sub.paystack_subscription_code == "SUB_abc"
    assert sub.trial_end is None
    assert 1 <= sub.billing_anniversary_day <= 28
    assert as_utc(sub.current_period_end) > as_utc(sub.current_period_start)


@pytest.mark.db
def test_activation_period_follows_anniversary(owner):
    _subscription(trial_end=datetime(2025, 1, 14, tzinfo=UTC))
    evt = parse_event(_charge_success(
        {"type": "new-subscription", "user_id": "alice", "plan_id": "premium",
         "subscription_id": "sub_alice"}))
    out = handle_event(evt, now=datetime(2025, 1, 31, 9, 30, tzinfo=UTC))
    assert out.outcome == "handled"

    sub = _sub()
    assert sub.billing_anniversary_day == 28
    assert as_utc(sub.current_period_start) == datetime(2025, 1, 31, 9, 30, tzinfo=UTC)
    assert as_utc(sub.current_period_end) == datetime(2025, 2, 28, 9, 30, tzinfo=UTC)
    assert sub.trial_end is None


@pytest.mark.db
def test_metadata_may_arrive_as_json_string(client, owner):
    _subscription()
    r = post_webhook(client, _charge_success(
        '{"type": "new-subscription", "user_id": "alice", "plan_id": "pro", '
        '"subscription_id": "sub_alice"}'))
    assert r.status_code == 200
    assert _sub().status == "active"


@pytest.mark.db
def test_new_subscription_without_metadata_is_acknowledged_with_error(client, owner):
    _subscription()
    r = post_webhook(client, _charge_success({"type": "new-subscription", "user_id": "alice"}))
    assert r.status_code == 200
    assert r.get_json() == {"status": "error", "message": "Missing metadata."}
    assert _sub().status == "inactive"


@pytest.mark.db
@pytest.mark.parametrize("plan_id", ["free", "bogus"])
def test_new_subscription_for_unpaid_plan_is_rejected(client, owner, plan_id):
    _subscription()
    r = post_webhook(client, _charge_success(
        {"type": "new-subscription", "user_id": "alice", "plan_id": plan_id,
         "subscription_id": "sub_alice"}))
    assert r.status_code == 200
    assert r.get_json() == {"status": "error", "message": "Missing metadata."}
    sub = _sub()
    assert sub.status == "inactive"
    assert sub.plan == "free"
    assert sub.current_period_end is None


@pytest.mark.db
def test_invoice_payment_settles_and_extends(client, owner):
    _subscription(plan="pro", status="past_due", price_per_member=Decimal("9000"),
                  billing_anniversary_day=15,
                  current_period_start=datetime(2025, 2, 15, tzinfo=UTC),
                  current_period_end=datetime(2025, 3, 15, tzinfo=UTC))
    _invoice("sub_alice")

    r = post_webhook(client, _charge_success(
        {"type": "invoice-payment", "invoice_id": "inv_1", "user_id": "alice"}))
    assert r.status_code == 200

    inv = _inv()
    assert inv.status == "paid"
    assert inv.paid_at is not None
    sub = _sub()
    assert sub.status == "active"
    assert as_utc(sub.current_period_start) == datetime(2025, 3, 15, tzinfo=UTC)
    assert as_utc(sub.current_period_end) == datetime(2025, 4, 15, tzinfo=UTC)


@pytest.mark.db
def test_replayed_invoice_payment_changes_nothing(client, owner):
    _subscription(plan="pro", status="active", billing_anniversary_day=15,
                  current_period_start=datetime(2025, 2, 15, tzinfo=UTC),
                  current_period_end=datetime(2025, 3, 15, tzinfo=UTC))
    _invoice("sub_alice")
    payload = _charge_success({"type": "invoice-payment", "invoice_id": "inv_1"})

    assert post_webhook(client, payload).status_code == 200
    first_paid_at = _inv().paid_at

    # simulate the next renewal having moved the period on
    with session_scope() as s:
        sub = s.get(Subscription, "sub_alice")
        sub.current_period_start = datetime(2025, 4, 15, tzinfo=UTC)
        sub.current_period_end = datetime(2025, 5, 15, tzinfo=UTC)

    assert post_webhook(client, payload).status_code == 200
    assert _inv().paid_at == first_paid_at
    assert as_utc(_sub().current_period_end) == datetime(2025, 5, 15, tzinfo=UTC)

    with session_scope() as s:
        outcomes = [e.outcome for e in s.execute(
            select(WebhookEvent).order_by(WebhookEvent.id)).scalars()]
    assert outcomes == ["handled", "ignored"]


@pytest.mark.db
def test_unknown_invoice_is_acknowledged(client, owner):
    r = post_webhook(client, _charge_success({"invoice_id": "inv_missing"}))
    assert r.status_code == 200
    assert r.get_json() == {"message": "Success (invoice not found)"}


@pytest.mark.db
def test_draft_invoice_is_not_settled(client, owner):
    _subscription()
    _invoice("sub_alice", status="draft", amount="-500.00")
    post_webhook(client, _charge_success({"invoice_id": "inv_1"}))
    assert _inv().status == "draft"
    assert _sub().status == "inactive"


@pytest.mark.db
def test_charge_failed_marks_past_due(client, owner):
    _subscription(plan="pro", status="active")
    _invoice("sub_alice")
    r = post_webhook(client, {"event": "charge.failed",
                              "data": {"reference": "r2", "metadata": {"invoice_id": "inv_1"}}})
    assert r.status_code == 200
    assert _sub().status == "past_due"
    assert _inv().status == "open"


@pytest.mark.db
def test_charge_failed_on_paid_invoice_is_ignored(client, owner):
    _subscription(plan="pro", status="active")
    _invoice("sub_alice", status="paid")
    post_webhook(client, {"event": "charge.failed",
                          "data": {"metadata": {"invoice_id": "inv_1"}}})
    assert _sub().status == "active"


@pytest.mark.db
def test_subscription_update_switches_plan(client, owner):
    _subscription(plan="pro", status="active", paystack_subscription_code="SUB_abc")
    r = post_webhook(client, {"event": "subscription.update", "data": {
        "subscription_code": "SUB_abc", "plan": {"plan_code": "premium"}}})
    assert r.status_code == 200
    sub = _sub()
    assert sub.plan == "premium"
    assert sub.price_per_member == Decimal("45000.00")

    post_webhook(client, {"event": "subscription.update", "data": {
        "subscription_code": "SUB_abc", "plan": {"plan_code": "PLN_unknown"}}})
    assert _sub().plan == "premium"


@pytest.mark.db
def test_subscription_update_to_free_plan_is_ignored(client, owner):
    _subscription(plan="pro", status="active", price_per_member=Decimal("9000.00"),
                  paystack_subscription_code="SUB_abc")
    r = post_webhook(client, {"event": "subscription.update", "data": {
        "subscription_code": "SUB_abc", "plan": {"plan_code": "free"}}})
    assert r.status_code == 200
    sub = _sub()
    assert sub.plan == "pro"
    assert sub.price_per_member == Decimal("9000.00")


@pytest.mark.db
def test_subscription_disable_cancels(client, owner):
    _subscription(plan="pro", status="active", paystack_subscription_code="SUB_abc")
    r = post_webhook(client, {"event": "subscription.disable",
                              "data": {"subscription_code": "SUB_abc"}})
    assert r.status_code == 200
    sub = _sub()
    assert sub.status == "canceled"
    assert sub.cancel_at_period_end is True
    assert sub.canceled_at is not None


@pytest.mark.db
def test_subscription_create_is_acknowledged(client, owner):
    r = post_webhook(client, {"event": "subscription.create",
                              "data": {"subscription_code": "SUB_new"}})
    assert r.status_code == 200
    assert r.get_json() == {"status": "success"}


@pytest.mark.db
def test_processed_events_are_recorded_and_audited(client, owner):
    _subscription()
    post_webhook(client, _charge_success(
        {"type": "new-subscription", "user_id": "alice", "plan_id": "pro",
         "subscription_id": "sub_alice"}, reference="ref_audit"))

    with session_scope() as s:
        ev = s.execute(select(WebhookEvent)).scalars().one()
        assert (ev.provider, ev.event_type, ev.reference, ev.outcome) == (
            "paystack", "charge.success", "ref_audit", "handled")
        assert '"ref_audit"' in ev.raw
        row = s.execute(select(AuditLog).where(
            AuditLog.action == "billing.webhook.charge.success")).scalars().one()
        assert row.actor == "paystack"
        assert row.outcome == "success"
        assert row.target_id == "sub_alice"


@pytest.mark.db
def test_processing_error_is_500_and_recorded(client, owner, monkeypatch):
    def boom(evt, now=None):
        raise RuntimeError("db down")
    monkeypatch.setattr("controllers.webhooks.handle_event", boom)

    r = post_webhook(client, _charge_success({"invoice_id": "inv_1"}))
    assert r.status_code == 500
    with session_scope() as s:
        assert s.execute(select(WebhookEvent.outcome)).scalar_one() == "failed"
