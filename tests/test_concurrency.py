from concurrent.futures import ThreadPoolExecutor

from models import TransactionStatus
from settlement import ALREADY_PROCESSED, APPLIED, parse_callback, settle_callback

WORKERS = 8


def _settle_in_own_session(session_factory, gateway, body):
    session = session_factory()
    try:
        return settle_callback(session, parse_callback(body), gateway, mode="atomic")
    finally:
        session.close()


def test_redelivered_callback_settles_exactly_once(session_factory, gateway, fake_razorpay,
                                                   make_transaction, signed_callback, read_state):
    make_transaction(amount=50000)
    fake_razorpay.add_payment("pay_1")
    body = signed_callback()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        outcomes = list(pool.map(
            lambda _: _settle_in_own_session(session_factory, gateway, body), range(WORKERS)
        ))

    assert sum(1 for o in outcomes if o.transitioned) == 1
    assert sorted(o.settlement for o in outcomes) == sorted([APPLIED] + [ALREADY_PROCESSED] * (WORKERS - 1))
    assert all(o.transaction.status == TransactionStatus.completed for o in outcomes)
    txn, balance = read_state()
    assert txn.status == TransactionStatus.completed
    assert balance == 50000

def test_concurrent_topups_on_one_wallet_all_land(session_factory, gateway, fake_razorpay,
                                                  make_transaction, signed_callback, read_state):
    amounts = [1000 * (i + 1) for i in range(WORKERS)]
    bodies = []
    for i, amount in enumerate(amounts):
        make_transaction(f"TXN_{i}", owner_id="patient-1", amount=amount)
        fake_razorpay.add_payment(f"pay_{i}", amount=amount)
        bodies.append(signed_callback(transaction_id=f"TXN_{i}", payment_id=f"pay_{i}"))

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        outcomes = list(pool.map(
            lambda body: _settle_in_own_session(session_factory, gateway, body), bodies
        ))

    assert all(o.settlement == APPLIED for o in outcomes)
    _, balance = read_state(transaction_id="TXN_0")
    assert balance == sum(amounts)
