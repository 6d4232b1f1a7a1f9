import asyncio
import re
from decimal import Decimal

import pytest

from musixbot.errors import NotFoundError, TransportError
from musixbot.models.enums import PaymentStatus
from musixbot.services.payment_ledger import PaymentLedger
from musixbot.services.request_store import RequestStore

from conftest import WALLETS, FakeChainVerifier, FakeClock


@pytest.fixture()
def ledger_parts():
    clock = FakeClock()
    verifier = FakeChainVerifier()
    store = RequestStore(clock=clock)
    ledger = PaymentLedger(
        verifier,
        store,
        amount_usd=Decimal("10"),
        wallet_addresses=WALLETS,
        max_verification_seconds=1800,
        max_attempts=3,
        clock=clock,
    )
    return ledger, verifier, store, clock


def _create(ledger, store, user_id="user-1234", correlation_id="post-1"):
    payment = ledger.create_payment_request(user_id, correlation_id)
    store.store_request(correlation_id, user_id, "lofi beats", payment)
    return payment


def test_order_id_format_and_initial_state(ledger_parts):
    ledger, _, store, clock = ledger_parts
    payment = _create(ledger, store, user_id="author-9876")
    assert re.fullmatch(r"PAY-\d+-9876", payment.order_id)
    assert payment.order_id == f"PAY-{int(clock.now * 1000)}-9876"
    assert payment.amount == Decimal("10")
    assert payment.destination_addresses == WALLETS
    assert payment.status == PaymentStatus.PENDING
    assert payment.verification_attempts == 0


def test_order_ids_are_unique_within_same_millisecond(ledger_parts):
    ledger, _, _, _ = ledger_parts
    first = ledger.create_payment_request("user-1234", "p1")
    second = ledger.create_payment_request("user-1234", "p2")
    assert first.order_id != second.order_id


def test_verify_with_proof_completes_and_is_idempotent(ledger_parts):
    ledger, verifier, store, _ = ledger_parts
    payment = _create(ledger, store)
    verifier.script = [True]

    assert asyncio.run(ledger.verify_payment(payment.order_id, "0xabc")) is True
    assert ledger.get_payment_status(payment.order_id) == "completed"
    assert store.get_request("post-1").payment.status == PaymentStatus.COMPLETED
    assert verifier.calls == [("proof", "0xabc")]

    # second verification: no chain call, same answer
    assert asyncio.run(ledger.verify_payment(payment.order_id, "0xabc")) is True
    assert len(verifier.calls) == 1


def test_expired_payment_fails_regardless_of_proof(ledger_parts):
    ledger, verifier, store, clock = ledger_parts
    payment = _create(ledger, store)
    verifier.default = True
    clock.advance(1800.001)

    assert asyncio.run(ledger.verify_payment(payment.order_id, "0xvalid")) is False
    assert ledger.get_payment_status(payment.order_id) == "failed"
    assert verifier.calls == []
    failure = ledger.get_failure(payment.order_id)
    assert failure.error_type == "PaymentExpiredError"
    assert store.get_request("post-1").payment.status == PaymentStatus.FAILED


def test_fails_exactly_on_max_attempts(ledger_parts):
    ledger, verifier, store, _ = ledger_parts
    payment = _create(ledger, store)
    verifier.default = False

    assert asyncio.run(ledger.verify_payment(payment.order_id)) is False
    assert ledger.get_payment_status(payment.order_id) == "pending"
    assert asyncio.run(ledger.verify_payment(payment.order_id)) is False
    assert ledger.get_payment_status(payment.order_id) == "pending"
    assert asyncio.run(ledger.verify_payment(payment.order_id)) is False
    assert ledger.get_payment_status(payment.order_id) == "failed"
    assert ledger.get_payment(payment.order_id).verification_attempts == 3
    assert store.get_request("post-1").payment.verification_attempts == 3

    # failed stays failed without another chain call
    calls = len(verifier.calls)
    assert asyncio.run(ledger.verify_payment(payment.order_id)) is False
    assert len(verifier.calls) == calls


def test_transport_errors_count_as_failed_attempts(ledger_parts):
    ledger, verifier, store, _ = ledger_parts
    payment = _create(ledger, store)
    verifier.script = [TransportError("rpc down")]

    assert asyncio.run(ledger.verify_payment(payment.order_id)) is False
    failure = ledger.get_failure(payment.order_id)
    assert failure.error == "rpc down"
    assert failure.error_type == "TransportError"
    assert failure.attempts == 1
    assert [f.order_id for f in ledger.get_failed_payments()] == [payment.order_id]


def test_unknown_order_raises_not_found(ledger_parts):
    ledger, _, _, _ = ledger_parts
    with pytest.raises(NotFoundError):
        asyncio.run(ledger.verify_payment("PAY-0-0000"))
    assert ledger.get_payment_status("PAY-0-0000") == "not_found"


def test_manual_retry_resets_attempts_and_reverifies(ledger_parts):
    ledger, verifier, store, _ = ledger_parts
    payment = _create(ledger, store)
    verifier.script = [False, False, False, True]
    for _ in range(3):
        asyncio.run(ledger.verify_payment(payment.order_id))
    assert ledger.get_payment_status(payment.order_id) == "failed"

    assert asyncio.run(ledger.retry_failed_payment(payment.order_id)) is True
    assert ledger.get_payment_status(payment.order_id) == "completed"
    assert ledger.get_failure(payment.order_id) is None
    assert ledger.get_failed_payments() == []


def test_manual_retry_requires_failure_record(ledger_parts):
    ledger, verifier, store, _ = ledger_parts
    payment = _create(ledger, store)
    assert asyncio.run(ledger.retry_failed_payment(payment.order_id)) is False
    assert asyncio.run(ledger.retry_failed_payment("PAY-unknown")) is False
    assert verifier.calls == []


def test_manual_retry_of_expired_payment_fails_again(ledger_parts):
    ledger, verifier, store, clock = ledger_parts
    payment = _create(ledger, store)
    clock.advance(3600)
    asyncio.run(ledger.verify_payment(payment.order_id))
    verifier.default = True

    assert asyncio.run(ledger.retry_failed_payment(payment.order_id)) is False
    assert ledger.get_payment_status(payment.order_id) == "failed"


def test_restore_never_downgrades_completed(ledger_parts):
    ledger, verifier, store, _ = ledger_parts
    payment = _create(ledger, store)
    stale_copy = payment.model_copy()
    verifier.script = [True]
    asyncio.run(ledger.verify_payment(payment.order_id))

    assert ledger.restore_payment(stale_copy) is False
    assert ledger.get_payment_status(payment.order_id) == "completed"
    assert ledger.get_pending_payments() == []


def test_cleanup_purges_old_payments_and_failures(ledger_parts):
    ledger, _, store, clock = ledger_parts
    old = _create(ledger, store, correlation_id="post-old")
    asyncio.run(ledger.verify_payment(old.order_id))
    assert ledger.get_failure(old.order_id) is not None

    clock.advance(172_000)
    fresh = _create(ledger, store, correlation_id="post-new")
    clock.advance(1_000)

    assert ledger.cleanup(172_800) == [old.order_id]
    assert ledger.get_payment(old.order_id) is None
    assert ledger.get_failed_payments() == []
    assert ledger.get_payment(fresh.order_id) is not None
    assert ledger.cleanup(172_800) == []
