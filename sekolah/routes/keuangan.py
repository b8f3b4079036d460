from flask import Blueprint, request
from flask_login import current_user, login_required

from sekolah.decorators import staff_required
from sekolah.exceptions import ValidationError
from sekolah.forms import TariffForm, ChargeForm, GenerateChargesForm, PaymentForm
from sekolah.models import UserRole
from sekolah.services.billing_service import BillingService
from sekolah.utils.permissions import is_homeroom_or_admin
from sekolah.utils.responses import success


keuangan_bp = Blueprint('keuangan', __name__)


def _access_check_for(student_id):
    """Siswa melihat datanya sendiri tanpa cek tambahan; selain itu harus wali kelas / admin / TU."""
    if current_user.role == UserRole.SISWA and current_user.student_id == student_id:
        return None
    return is_homeroom_or_admin


# =========================================================
# TARIF
# =========================================================
@keuangan_bp.route('/tarif', methods=['GET'])
@staff_required
def list_tariffs():
    tariffs = BillingService.list_tariffs(academic_year_id=request.args.get('academic_year_id', type=int))
    return success([t.to_dict() for t in tariffs])


@keuangan_bp.route('/tarif', methods=['POST'])
@staff_required
def create_tariff():
    data = TariffForm.from_request().validated_data()
    tariff = BillingService.create_tariff(
        name=data['name'],
        amount=data['amount'],
        academic_year_id=data['academic_year_id'],
        description=data.get('description'),
    )
    return success(tariff.to_dict(), message='Tarif berhasil dibuat', status=201)


@keuangan_bp.route('/tarif/<int:tariff_id>/terbitkan', methods=['POST'])
@staff_required
def generate_charges(tariff_id):
    data = GenerateChargesForm.from_request().validated_data()

    payload = request.get_json(silent=True) or {}
    student_ids = payload.get('student_ids') if isinstance(payload, dict) else None
    if student_ids is not None and (
            not isinstance(student_ids, list) or not all(isinstance(i, int) for i in student_ids)):
        raise ValidationError('student_ids harus berupa daftar id siswa', field='student_ids')

    result = BillingService.generate_charges(
        tariff_id,
        month=data.get('month'),
        student_ids=student_ids,
        due_date=data.get('due_date'),
    )
    return success(
        {'created': [c.to_dict() for c in result['created']], 'skipped': result['skipped']},
        message=f"Berhasil membuat {len(result['created'])} tagihan, {result['skipped']} dilewati",
        status=201,
    )


# =========================================================
# TAGIHAN
# =========================================================
@keuangan_bp.route('/tagihan', methods=['POST'])
@staff_required
def create_charge():
    data = ChargeForm.from_request().validated_data()
    charge = BillingService.create_charge(
        student_id=data['student_id'],
        tariff_id=data['tariff_id'],
        academic_year_id=data.get('academic_year_id'),
        month=data.get('month'),
        due_date=data.get('due_date'),
    )
    return success(charge.to_dict(), message='Tagihan berhasil diterbitkan', status=201)


@keuangan_bp.route('/siswa/<int:student_id>/tagihan', methods=['GET'])
@login_required
def student_charges(student_id):
    rows = BillingService.list_charges_for_student(
        student_id, caller=current_user, authorize=_access_check_for(student_id)
    )
    return success(rows)


@keuangan_bp.route('/siswa/<int:student_id>/ringkasan', methods=['GET'])
@login_required
def student_summary(student_id):
    summary = BillingService.student_summary(
        student_id, caller=current_user, authorize=_access_check_for(student_id)
    )
    return success(summary)


@keuangan_bp.route('/tunggakan', methods=['GET'])
@staff_required
def outstanding():
    rows = BillingService.outstanding_charges(academic_year_id=request.args.get('academic_year_id', type=int))
    return success(rows, total=len(rows))


@keuangan_bp.route('/statistik', methods=['GET'])
@staff_required
def stats():
    return success(BillingService.stats(academic_year_id=request.args.get('academic_year_id', type=int)))


@keuangan_bp.route('/siswa/<int:student_id>/settlement/<int:tariff_id>', methods=['GET'])
@staff_required
def settlement(student_id, tariff_id):
    return success(BillingService.compute_settlement(student_id, tariff_id).to_dict())


# =========================================================
# PEMBAYARAN
# =========================================================
@keuangan_bp.route('/tagihan/<int:charge_id>/bayar', methods=['POST'])
@staff_required
def record_payment(charge_id):
    data = PaymentForm.from_request().validated_data()
    payment, settlement = BillingService.record_payment(
        charge_id,
        amount=data['amount'],
        method=data['method'],
        note=data.get('note'),
        paid_at=data.get('date'),
        recorded_by=current_user,
    )
    return success(
        {'payment': payment.to_dict(), 'settlement': settlement.to_dict()},
        message=f'Pembayaran Rp {payment.amount:,} berhasil dicatat',
        status=201,
    )


@keuangan_bp.route('/tagihan/<int:charge_id>/pembayaran', methods=['GET'])
@staff_required
def charge_payments(charge_id):
    return success(BillingService.list_payments_for_charge(charge_id))


@keuangan_bp.route('/siswa/<int:student_id>/pembayaran', methods=['GET'])
@login_required
def student_payments(student_id):
    rows = BillingService.list_payments_for_student(
        student_id, caller=current_user, authorize=_access_check_for(student_id)
    )
    return success(rows)
