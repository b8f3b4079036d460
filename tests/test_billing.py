from datetime import date, datetime

import pytest

from sekolah.exceptions import (
    ConflictError,
    Forbidden,
    ImmutableRecordError,
    InvalidAmount,
    NotFound,
    OverpaymentError,
    ValidationError,
)
from sekolah.extensions import db
from sekolah.models import AcademicYear, AuditLog, Charge, ChargeStatus, Payment, Teacher, ClassRoom, User, UserRole
from sekolah.services.account_service import AccountService
from sekolah.services.billing_service import BillingService, Settlement
from sekolah.utils.permissions import is_homeroom_or_admin


@pytest.fixture
def student(make_student):
    return make_student(full_name='Rina Marlina')


@pytest.fixture
def spp(make_tariff):
    return make_tariff('SPP', 500000)


def _pay(charge, amount, method='TUNAI', **kwargs):
    payment, settlement = BillingService.record_payment(charge.id, amount, method, **kwargs)
    return settlement


# =========================================================
# SETTLEMENT ENGINE
# =========================================================
@pytest.mark.parametrize('total_paid, expected', [
    (0, ChargeStatus.UNPAID),
    (1, ChargeStatus.PARTIAL),
    (499999, ChargeStatus.PARTIAL),
    (500000, ChargeStatus.PAID),
    (600000, ChargeStatus.PAID),
])
def test_classify_is_three_way(total_paid, expected):
    assert BillingService.classify(total_paid, 500000) == expected


def test_settlement_properties():
    settlement = Settlement(student_id=1, tariff_id=2, total_paid=200000, nominal=500000)

    assert not settlement.settled
    assert settlement.remaining == 300000
    assert settlement.status == ChargeStatus.PARTIAL
    assert settlement.to_dict()['status_label'] == 'Cicilan'


def test_installments_until_settled(student, spp):
    charge = BillingService.create_charge(student.id, spp.id)
    assert charge.status == ChargeStatus.UNPAID

    settlement = _pay(charge, 200000)
    assert db.session.get(Charge, charge.id).status == ChargeStatus.PARTIAL
    assert (settlement.total_paid, settlement.settled) == (200000, False)
    assert BillingService.compute_settlement(student.id, spp.id) == settlement

    settlement = _pay(charge, 300000, method='transfer')
    assert db.session.get(Charge, charge.id).status == ChargeStatus.PAID
    assert (settlement.total_paid, settlement.settled) == (500000, True)


def test_settlement_pools_charges_of_same_tariff(student, spp):
    july = BillingService.create_charge(student.id, spp.id, month='Juli')
    august = BillingService.create_charge(student.id, spp.id, month='Agustus')

    _pay(july, 200000)
    _pay(august, 100000)

    settlement = BillingService.compute_settlement(student.id, spp.id)
    assert settlement.total_paid == 300000
    assert not settlement.settled
    # Status cache semua tagihan pasangan (siswa, tarif) ikut diperbarui
    assert {c.status for c in Charge.query.all()} == {ChargeStatus.PARTIAL}


def test_settlement_ignores_other_students_and_tariffs(make_student, make_tariff, student, spp):
    other_student = make_student()
    gedung = make_tariff('Uang Gedung', 2000000)
    BillingService.record_payment(BillingService.create_charge(other_student.id, spp.id).id, 500000, 'TUNAI')
    BillingService.record_payment(BillingService.create_charge(student.id, gedung.id).id, 750000, 'QRIS')
    BillingService.create_charge(student.id, spp.id)

    assert BillingService.compute_settlement(student.id, spp.id).total_paid == 0
    assert BillingService.compute_settlement(student.id, gedung.id).total_paid == 750000


def test_settlement_is_monotonic_and_stays_settled(student, spp):
    charges = [BillingService.create_charge(student.id, spp.id, month=m) for m in ('Juli', 'Agustus')]
    history = []
    for charge, amount in [(charges[0], 100000), (charges[1], 150000), (charges[0], 250000),
                           (charges[1], 100000), (charges[0], 150000)]:
        history.append(_pay(charge, amount))

    totals = [s.total_paid for s in history]
    assert totals == sorted(totals)
    settled = [s.settled for s in history]
    assert settled == [False, False, True, True, True]
    assert all(s.settled == (s.total_paid >= s.nominal) for s in history)


def test_cached_status_matches_live_settlement(student, spp):
    charge = BillingService.create_charge(student.id, spp.id, month='Juli')
    for amount in (50000, 150000, 300000):
        _pay(charge, amount)
        db.session.expire_all()
        cached = db.session.get(Charge, charge.id).status
        assert cached == BillingService.compute_settlement(student.id, spp.id).status


def test_new_charge_starts_from_pooled_status(student, spp):
    july = BillingService.create_charge(student.id, spp.id, month='Juli')
    _pay(july, 500000)

    august = BillingService.create_charge(student.id, spp.id, month='Agustus')

    assert august.status == ChargeStatus.PAID


def test_compute_settlement_unknown_references(student, spp):
    with pytest.raises(NotFound):
        BillingService.compute_settlement(student.id, 999)
    with pytest.raises(NotFound):
        BillingService.compute_settlement(999, spp.id)


# =========================================================
# RECORD PAYMENT VALIDATION
# =========================================================
@pytest.mark.parametrize('amount', [-100, 0, 1.5, '200000', None, True])
def test_invalid_amount_inserts_nothing(student, spp, amount):
    charge = BillingService.create_charge(student.id, spp.id)

    with pytest.raises(ValidationError) as exc:
        BillingService.record_payment(charge.id, amount, 'TUNAI')

    assert isinstance(exc.value, InvalidAmount)
    assert exc.value.field == 'amount'
    assert Payment.query.count() == 0


def test_unknown_method_is_rejected(student, spp):
    charge = BillingService.create_charge(student.id, spp.id)

    with pytest.raises(ValidationError) as exc:
        BillingService.record_payment(charge.id, 1000, 'CEK')
    assert exc.value.field == 'method'


def test_invalid_date_is_rejected(student, spp):
    charge = BillingService.create_charge(student.id, spp.id)

    with pytest.raises(ValidationError) as exc:
        BillingService.record_payment(charge.id, 1000, 'TUNAI', paid_at='kemarin')
    assert exc.value.field == 'date'


def test_payment_date_accepts_plain_date(student, spp):
    charge = BillingService.create_charge(student.id, spp.id)

    payment, _ = BillingService.record_payment(charge.id, 1000, 'TUNAI', paid_at=date(2025, 7, 10))

    assert payment.date == datetime(2025, 7, 10)


def test_payment_on_unknown_charge(ctx):
    with pytest.raises(NotFound):
        BillingService.record_payment(404, 1000, 'TUNAI')


def test_overpayment_is_rejected(student, spp):
    charge = BillingService.create_charge(student.id, spp.id)
    _pay(charge, 450000)

    with pytest.raises(OverpaymentError) as exc:
        _pay(charge, 100000)

    assert exc.value.remaining == 50000
    assert Payment.query.count() == 1
    assert db.session.get(Charge, charge.id).status == ChargeStatus.PARTIAL


def test_overpayment_allowed_when_configured(ctx, student, spp):
    ctx.config['BILLING_ALLOW_OVERPAYMENT'] = True
    charge = BillingService.create_charge(student.id, spp.id)

    settlement = _pay(charge, 600000)

    assert settlement.total_paid == 600000
    assert settlement.remaining == 0
    assert settlement.status == ChargeStatus.PAID


def test_payment_writes_audit_row_and_recorder(student, spp, admin):
    charge = BillingService.create_charge(student.id, spp.id)

    payment, _ = BillingService.record_payment(charge.id, 100000, 'QRIS', note='Cicilan 1', recorded_by=admin)

    assert payment.recorded_by_id == admin.id
    assert payment.method == 'QRIS'
    log = AuditLog.query.filter_by(action='RECORD_PAYMENT').one()
    assert log.user_id == admin.id
    assert charge.invoice_number in log.details


def test_payments_are_append_only(student, spp):
    charge = BillingService.create_charge(student.id, spp.id)
    payment, _ = BillingService.record_payment(charge.id, 100000, 'TUNAI')

    payment.amount = 1
    with pytest.raises(ImmutableRecordError):
        db.session.commit()
    db.session.rollback()

    db.session.delete(db.session.get(Payment, payment.id))
    with pytest.raises(ImmutableRecordError):
        db.session.commit()
    db.session.rollback()

    assert db.session.get(Payment, payment.id).amount == 100000


# =========================================================
# TARIF & TAGIHAN
# =========================================================
def test_create_tariff_validation(year, make_tariff):
    make_tariff('SPP', 500000)

    with pytest.raises(ConflictError):
        make_tariff('SPP', 450000)
    with pytest.raises(ValidationError):
        BillingService.create_tariff('Buku', 0, year.id)
    with pytest.raises(ValidationError):
        BillingService.create_tariff('Buku', 12.5, year.id)
    with pytest.raises(NotFound):
        BillingService.create_tariff('Buku', 1000, 999)


def test_create_charge_defaults(student, spp):
    charge = BillingService.create_charge(student.id, spp.id, month='Juli')

    assert charge.academic_year_id == spp.academic_year_id
    assert charge.invoice_number.startswith('INV/')
    assert charge.invoice_number.endswith(f'/{spp.id}/{student.id}/Juli')
    assert charge.due_date > date.today()


def test_duplicate_charge_is_conflict(student, spp):
    BillingService.create_charge(student.id, spp.id)
    with pytest.raises(ConflictError):
        BillingService.create_charge(student.id, spp.id)

    BillingService.create_charge(student.id, spp.id, month='Juli')
    with pytest.raises(ConflictError):
        BillingService.create_charge(student.id, spp.id, month='Juli')

    assert Charge.query.count() == 2


def test_generate_charges_skips_existing(make_student, spp):
    students = [make_student() for _ in range(3)]
    BillingService.create_charge(students[0].id, spp.id, month='Juli')

    result = BillingService.generate_charges(spp.id, month='Juli')

    assert len(result['created']) == 2
    assert result['skipped'] == 1
    assert Charge.query.filter_by(month='Juli').count() == 3


def test_generate_charges_for_selected_students(make_student, spp):
    students = [make_student() for _ in range(3)]

    result = BillingService.generate_charges(spp.id, student_ids=[students[1].id])

    assert [c.student_id for c in result['created']] == [students[1].id]


def test_generate_charges_with_empty_selection_bills_nobody(make_student, spp):
    for _ in range(3):
        make_student()

    with pytest.raises(ValidationError) as exc:
        BillingService.generate_charges(spp.id, month='Juli', student_ids=[])

    assert exc.value.field == 'student_ids'
    assert Charge.query.count() == 0


def test_create_charge_rejects_other_academic_year(student, spp):
    other_year = AcademicYear(name='2026/2027', semester='Ganjil')
    db.session.add(other_year)
    db.session.commit()
    BillingService.create_charge(student.id, spp.id)

    with pytest.raises(ValidationError) as exc:
        BillingService.create_charge(student.id, spp.id, academic_year_id=other_year.id)

    assert exc.value.field == 'academic_year_id'
    assert Charge.query.count() == 1


# =========================================================
# LISTINGS & AUTHORIZATION
# =========================================================
def test_list_charges_labels_rows_with_pooled_status(student, spp, make_tariff):
    gedung = make_tariff('Uang Gedung', 2000000)
    july = BillingService.create_charge(student.id, spp.id, month='Juli')
    BillingService.create_charge(student.id, spp.id, month='Agustus')
    BillingService.create_charge(student.id, gedung.id)
    _pay(july, 500000)

    rows = BillingService.list_charges_for_student(student.id)

    labels = [(r['tariff_name'], r['month'], r['status'], r['total_paid']) for r in rows]
    assert labels == [
        ('SPP', 'Juli', 'PAID', 500000),
        ('SPP', 'Agustus', 'PAID', 500000),
        ('Uang Gedung', None, 'UNPAID', 0),
    ]


def _homeroom_setup(student):
    homeroom = Teacher(nip='111', full_name='Wali Kelas')
    other = Teacher(nip='222', full_name='Guru Lain')
    db.session.add_all([homeroom, other])
    db.session.flush()
    class_room = ClassRoom(name='VII-A', homeroom_teacher_id=homeroom.id)
    db.session.add(class_room)
    db.session.flush()
    student.current_class_id = class_room.id
    db.session.commit()

    wali = AccountService.provision('wali@x.com', 'guru123', UserRole.GURU, teacher=homeroom)
    guru = AccountService.provision('guru@x.com', 'guru123', UserRole.GURU, teacher=other)
    return wali, guru


def test_list_charges_authorization_predicate(student, spp, admin):
    BillingService.create_charge(student.id, spp.id)
    wali, guru = _homeroom_setup(student)

    assert len(BillingService.list_charges_for_student(student.id, wali, is_homeroom_or_admin)) == 1
    assert len(BillingService.list_charges_for_student(student.id, admin, is_homeroom_or_admin)) == 1
    with pytest.raises(Forbidden):
        BillingService.list_charges_for_student(student.id, guru, is_homeroom_or_admin)
    with pytest.raises(Forbidden):
        BillingService.list_payments_for_student(student.id, guru, is_homeroom_or_admin)


def test_authorize_predicate_is_injected(student, spp):
    BillingService.create_charge(student.id, spp.id)
    calls = []

    def deny(caller, class_room):
        calls.append((caller, class_room))
        return False

    with pytest.raises(Forbidden):
        BillingService.list_charges_for_student(student.id, 'someone', deny)
    assert calls == [('someone', None)]


def test_homeroom_predicate_rejects_anonymous_and_students(student):
    wali, _ = _homeroom_setup(student)
    student_account = AccountService.provision('rina@x.com', 'rina123', UserRole.SISWA, student=student)

    assert is_homeroom_or_admin(wali, student.current_class)
    assert not is_homeroom_or_admin(None, student.current_class)
    assert not is_homeroom_or_admin(student_account, student.current_class)
    assert not is_homeroom_or_admin(wali, None)
    assert db.session.get(User, student_account.id).role == UserRole.SISWA


def test_payment_listings(student, spp):
    july = BillingService.create_charge(student.id, spp.id, month='Juli')
    august = BillingService.create_charge(student.id, spp.id, month='Agustus')
    BillingService.record_payment(july.id, 100000, 'TUNAI', paid_at=datetime(2025, 7, 1))
    BillingService.record_payment(august.id, 200000, 'TRANSFER', paid_at=datetime(2025, 8, 1))
    BillingService.record_payment(july.id, 50000, 'QRIS', paid_at=datetime(2025, 7, 15))

    by_student = BillingService.list_payments_for_student(student.id)
    by_charge = BillingService.list_payments_for_charge(july.id)

    assert [p['amount'] for p in by_student] == [200000, 50000, 100000]
    assert by_student[0]['month'] == 'Agustus'
    assert [p['amount'] for p in by_charge['payments']] == [100000, 50000]
    assert by_charge['total_paid'] == 150000
    assert by_charge['remaining'] == 350000


def test_student_summary(student, spp, make_tariff):
    gedung = make_tariff('Uang Gedung', 2000000)
    spp_charge = BillingService.create_charge(student.id, spp.id)
    BillingService.create_charge(student.id, gedung.id)
    _pay(spp_charge, 500000)

    summary = BillingService.student_summary(student.id)

    assert summary['total_nominal'] == 2500000
    assert summary['total_paid'] == 500000
    assert summary['total_remaining'] == 2000000
    assert summary['unsettled'] == 1


# =========================================================
# REKAP
# =========================================================
def test_outstanding_charges_use_pooled_settlement(make_student, spp, make_tariff):
    rina, budi = make_student(full_name='Rina'), make_student(full_name='Budi')
    gedung = make_tariff('Uang Gedung', 2000000)
    rina_july = BillingService.create_charge(rina.id, spp.id, month='Juli')
    BillingService.create_charge(rina.id, spp.id, month='Agustus')
    budi_july = BillingService.create_charge(budi.id, spp.id, month='Juli')
    BillingService.create_charge(budi.id, gedung.id)
    _pay(rina_july, 500000)
    _pay(budi_july, 200000)

    rows = BillingService.outstanding_charges()

    assert [(r['student']['full_name'], r['tariff_name'], r['status'], r['total_paid'], r['remaining'])
            for r in rows] == [
        ('Budi', 'SPP', 'PARTIAL', 200000, 300000),
        ('Budi', 'Uang Gedung', 'UNPAID', 0, 2000000),
    ]
    assert BillingService.outstanding_charges(academic_year_id=999) == []


def test_billing_stats(make_student, spp, make_tariff):
    rina, budi = make_student(), make_student()
    gedung = make_tariff('Uang Gedung', 2000000)
    rina_july = BillingService.create_charge(rina.id, spp.id, month='Juli')
    BillingService.create_charge(rina.id, spp.id, month='Agustus')
    budi_july = BillingService.create_charge(budi.id, spp.id, month='Juli')
    BillingService.create_charge(budi.id, gedung.id)
    _pay(rina_july, 500000)
    _pay(budi_july, 200000)

    stats = BillingService.stats(spp.academic_year_id)

    assert stats['total'] == 4
    assert stats['status'] == {'UNPAID': 1, 'PARTIAL': 1, 'PAID': 2}
    assert stats['total_nominal'] == 500000 + 500000 + 2000000
    assert stats['total_paid'] == 700000
    assert stats['total_remaining'] == 300000 + 2000000
