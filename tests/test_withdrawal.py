import pytest

from chitfund import models
from chitfund.errors import Forbidden, InvalidState, NotFound
from chitfund.services import subscription_engine as engine
from chitfund.services import withdrawal_service


@pytest.fixture
def matured(db, make_merchant, make_plan, make_user, paid_proof):
    merchant = make_merchant()
    plan = make_plan(merchant, monthly_amount=500, duration_months=2)
    user = make_user()
    engine.subscribe(db, plan.id, user, paid_proof(plan, user))
    engine.pay_installment(db, plan.id, user, paid_proof(plan, user))
    return merchant, plan, user


def test_request_then_settle(db, matured):
    merchant, plan, user = matured
    bank = {"account_number": "1234567890", "ifsc": "HDFC0000001"}

    sub = withdrawal_service.request_withdrawal(db, plan.id, user, bank, "please transfer")
    assert sub.status == models.STATUS_REQUESTED_WITHDRAWAL
    assert sub.withdrawal_request["status"] == "pending"
    assert sub.withdrawal_request["bank_details"] == bank

    sub = withdrawal_service.settle(db, plan.id, merchant, user.id, 1000, "UTR123", "paid by NEFT")
    assert sub.status == models.STATUS_SETTLED
    assert sub.withdrawal_request["status"] == "approved"
    assert sub.settlement_details["transaction_id"] == "UTR123"
    assert sub.settlement_details["amount"] == 1000.0
    assert sub.settlement_details["ledger_installments"] == 2

    db.expire_all()
    stored = db.query(models.PlanSubscription).one()
    assert stored.withdrawal_request["status"] == "approved"


def test_withdraw_before_maturity(db, make_merchant, make_plan, make_user, paid_proof):
    plan = make_plan(make_merchant(), duration_months=3)
    user = make_user()
    engine.subscribe(db, plan.id, user, paid_proof(plan, user))

    with pytest.raises(InvalidState):
        withdrawal_service.request_withdrawal(db, plan.id, user)


def test_withdraw_with_lagging_status(db, make_merchant, make_plan, make_user, paid_proof):
    plan = make_plan(make_merchant(), duration_months=2)
    user = make_user()
    sub = engine.subscribe(db, plan.id, user, paid_proof(plan, user))
    sub.installments_paid = 2
    db.commit()
    assert sub.status == models.STATUS_ACTIVE

    sub = withdrawal_service.request_withdrawal(db, plan.id, user)
    assert sub.status == models.STATUS_REQUESTED_WITHDRAWAL


def test_withdraw_twice(db, matured):
    _, plan, user = matured
    withdrawal_service.request_withdrawal(db, plan.id, user)
    with pytest.raises(InvalidState):
        withdrawal_service.request_withdrawal(db, plan.id, user)


def test_withdraw_without_subscription(db, matured, make_user):
    _, plan, _ = matured
    with pytest.raises(NotFound):
        withdrawal_service.request_withdrawal(db, plan.id, make_user())


def test_settle_requires_owner_and_request(db, matured, make_merchant):
    merchant, plan, user = matured

    with pytest.raises(InvalidState):
        withdrawal_service.settle(db, plan.id, merchant, user.id, 1000)

    withdrawal_service.request_withdrawal(db, plan.id, user)
    with pytest.raises(Forbidden):
        withdrawal_service.settle(db, plan.id, make_merchant(), user.id, 1000)

    withdrawal_service.settle(db, plan.id, merchant, user.id, 1000)
    with pytest.raises(InvalidState):
        withdrawal_service.settle(db, plan.id, merchant, user.id, 1000)


def test_settle_flags_ledger_mismatch(db, make_merchant, make_plan, make_user, paid_proof, caplog):
    merchant = make_merchant()
    plan = make_plan(merchant, duration_months=2)
    user = make_user()
    sub = engine.subscribe(db, plan.id, user, paid_proof(plan, user))
    sub.installments_paid = 2
    db.commit()
    withdrawal_service.request_withdrawal(db, plan.id, user)

    with caplog.at_level("WARNING", logger="chitfund.withdrawals"):
        sub = withdrawal_service.settle(db, plan.id, merchant, user.id, 1000)

    assert sub.status == models.STATUS_SETTLED
    assert sub.settlement_details["ledger_installments"] == 1
    assert "1 completed payments against 2 credited installments" in caplog.text
