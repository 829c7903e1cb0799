import hashlib
import hmac

import pytest

from chitfund import models, payments
from chitfund.errors import InvalidSignature, ValidationFailed


def test_generate_signature_matches_hmac_sha256():
    expected = hmac.new(b"s3cret", b"order_A|pay_B", hashlib.sha256).hexdigest()
    assert payments.generate_signature("order_A", "pay_B", "s3cret") == expected


def test_verify_signature_accepts_valid_and_rejects_tampered():
    sig = payments.generate_signature("order_A", "pay_B", "s3cret")
    assert payments.verify_signature("order_A", "pay_B", sig, "s3cret")
    assert not payments.verify_signature("order_A", "pay_C", sig, "s3cret")
    assert not payments.verify_signature("order_A", "pay_B", sig, "other")
    assert not payments.verify_signature("order_A", "pay_B", sig.upper(), "s3cret")


@pytest.mark.parametrize("order_id,payment_id,signature", [
    (None, "pay_B", "sig"),
    ("order_A", "", "sig"),
    ("order_A", "pay_B", None),
])
def test_verify_signature_missing_fields(order_id, payment_id, signature):
    assert payments.verify_signature(order_id, payment_id, signature, "s3cret") is False


def test_incomplete_proof_is_a_validation_error(db):
    with pytest.raises(ValidationFailed):
        payments.verify_payment_proof(db, payments.PaymentProof("order_1", None, "x"))


def test_stored_order_verifies_with_its_own_mode(db, gateway, make_merchant, make_plan, make_user, sign):
    merchant = make_merchant()
    plan = make_plan(merchant)
    user = make_user()
    handle = payments.create_order(db, payments.InstallmentPurpose(plan, user.id))
    assert handle.credential_mode == payments.MODE_PLATFORM

    # merchant connects their own account after the order was issued
    other = make_merchant(own_keys=("rzp_live_m", "merchant_secret"))
    merchant.razorpay_key_id = other.razorpay_key_id
    merchant.razorpay_key_secret = other.razorpay_key_secret
    db.commit()

    order = payments.verify_payment_proof(db, sign(handle.order_id), plan=plan)
    assert order.order_id == handle.order_id

    with pytest.raises(InvalidSignature):
        payments.verify_payment_proof(db, sign(handle.order_id, secret="merchant_secret"), plan=plan)


def test_merchant_mode_order_needs_merchant_secret(db, gateway, make_merchant, make_plan, make_user, sign):
    merchant = make_merchant(own_keys=("rzp_live_m", "merchant_secret"))
    plan = make_plan(merchant)
    user = make_user()
    handle = payments.create_order(db, payments.InstallmentPurpose(plan, user.id))
    assert handle.credential_mode == payments.MODE_MERCHANT

    assert payments.verify_payment_proof(db, sign(handle.order_id, secret="merchant_secret"), plan=plan)
    with pytest.raises(InvalidSignature):
        payments.verify_payment_proof(db, sign(handle.order_id), plan=plan)


def test_order_for_another_plan_is_rejected(db, gateway, make_merchant, make_plan, make_user, sign):
    merchant = make_merchant()
    plan_a = make_plan(merchant, plan_name="A")
    plan_b = make_plan(merchant, plan_name="B")
    user = make_user()
    handle = payments.create_order(db, payments.InstallmentPurpose(plan_a, user.id))

    with pytest.raises(InvalidSignature):
        payments.verify_payment_proof(db, sign(handle.order_id), plan=plan_b)


def test_merchant_fee_order_is_not_an_installment(db, gateway, make_merchant, sign):
    merchant = make_merchant()
    handle = payments.create_order(db, payments.MerchantFeePurpose(merchant, "Basic"))

    with pytest.raises(InvalidSignature):
        payments.verify_payment_proof(db, sign(handle.order_id))
    assert payments.verify_payment_proof(db, sign(handle.order_id), purpose=payments.PURPOSE_MERCHANT_FEE)


def test_order_not_issued_here_is_rejected(db, make_merchant, make_plan, sign):
    merchant = make_merchant(own_keys=("rzp_live_m", "merchant_secret"))
    plan = make_plan(merchant)

    assert db.query(models.GatewayOrder).count() == 0
    with pytest.raises(InvalidSignature):
        payments.verify_payment_proof(db, sign("order_elsewhere", secret="merchant_secret"), plan=plan)
    with pytest.raises(InvalidSignature):
        payments.verify_payment_proof(db, sign("order_elsewhere"), plan=plan)
    with pytest.raises(InvalidSignature):
        payments.verify_payment_proof(db, sign("order_elsewhere"), purpose=payments.PURPOSE_MERCHANT_FEE)
