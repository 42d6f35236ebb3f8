from decimal import Decimal

from rank_engine.models.donation import Donation, DonationStatus, PaymentType
from rank_engine.services.donation_service import DonationService


def _record(service: DonationService, payment_id: str = "stripe_pi_1", **fields):
    values = dict(
        payment_id=payment_id,
        method="stripe",
        amount=Decimal("10.00"),
        currency="usd",
        payment_type=PaymentType.one_time,
    )
    values.update(fields)
    return service.record(**values)


def test_record_writes_completed_donation(db):
    service = DonationService(db)
    donation = _record(service, rank_id="vip", days=30)
    db.commit()

    assert donation.id is not None
    assert donation.status == DonationStatus.completed
    assert donation.currency == "USD"
    assert donation.receipt_number.startswith("VN-ST-")
    assert donation.receipt_number.endswith("_pi_1")
    assert service.exists("stripe_pi_1")


def test_unique_payment_id_is_the_duplicate_gate(db):
    service = DonationService(db)
    _record(service)
    db.commit()

    assert _record(service) is None
    assert db.query(Donation).count() == 1


def test_zero_days_are_stored_as_null(db):
    donation = _record(DonationService(db), days=0)
    db.commit()
    assert donation.days is None


def test_list_donations_filters(db):
    service = DonationService(db)
    _record(service, "stripe_a")
    _record(service, "kofi_b", method="kofi")
    _record(service, "kofi_c", method="kofi")
    db.commit()

    assert len(service.list_donations()) == 3
    assert {item.payment_id for item in service.list_donations(method="kofi")} == {"kofi_b", "kofi_c"}
    assert len(service.list_donations(limit=1)) == 1
