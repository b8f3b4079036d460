# sekolah/services/billing_service.py
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from sekolah.exceptions import (
    ConflictError,
    Forbidden,
    InvalidAmount,
    NotFound,
    OverpaymentError,
    ValidationError,
)
from sekolah.extensions import db
from sekolah.models import (
    AcademicYear,
    Charge,
    ChargeStatus,
    Payment,
    Student,
    Tariff,
    PAYMENT_METHODS,
    utcnow,
)
from sekolah.utils.audit import record_audit
from sekolah.utils.db import conflict_from_integrity


@dataclass(frozen=True)
class Settlement:
    """Hasil rekonsiliasi satu (siswa, tarif): semua pembayaran atas tagihan tarif itu dijumlahkan."""
    student_id: int
    tariff_id: int
    total_paid: int
    nominal: int

    @property
    def settled(self):
        return self.total_paid >= self.nominal

    @property
    def remaining(self):
        return max(self.nominal - self.total_paid, 0)

    @property
    def status(self):
        return BillingService.classify(self.total_paid, self.nominal)

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'tariff_id': self.tariff_id,
            'total_paid': self.total_paid,
            'nominal': self.nominal,
            'remaining': self.remaining,
            'settled': self.settled,
            'status': self.status.name,
            'status_label': self.status.value,
        }


def _require(model, key, entity):
    obj = db.session.get(model, key)
    if not obj:
        raise NotFound(entity, key)
    return obj


def _authorized_student(student_id, caller, authorize):
    """authorize(caller, class_room) dipanggil jika diberikan; False -> Forbidden."""
    student = _require(Student, student_id, 'Siswa')
    if authorize is not None and not authorize(caller, student.current_class):
        raise Forbidden('Anda tidak berhak melihat data keuangan siswa ini')
    return student


def _validate_amount(amount):
    # bool adalah subclass int, tolak eksplisit
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(amount)
    if amount <= 0:
        raise InvalidAmount(amount, message='Jumlah bayar harus lebih dari 0')
    return amount


class BillingService:
    # ==========================================
    # SETTLEMENT ENGINE
    # ==========================================
    @staticmethod
    def classify(total_paid, nominal):
        """0 -> Belum Lunas, kurang dari nominal -> Cicilan, sama/lebih -> Lunas."""
        if total_paid >= nominal:
            return ChargeStatus.PAID
        if total_paid > 0:
            return ChargeStatus.PARTIAL
        return ChargeStatus.UNPAID

    @staticmethod
    def compute_settlement(student_id, tariff_id):
        tariff = _require(Tariff, tariff_id, 'Tarif')
        _require(Student, student_id, 'Siswa')

        total_paid = (
            db.session.query(func.coalesce(func.sum(Payment.amount), 0))
            .join(Charge, Payment.charge_id == Charge.id)
            .filter(Charge.student_id == student_id, Charge.tariff_id == tariff_id)
            .scalar()
        )
        return Settlement(student_id=student_id, tariff_id=tariff_id,
                          total_paid=int(total_paid), nominal=tariff.amount)

    @staticmethod
    def refresh_charge_status(charge):
        """
        Satu-satunya penulis Charge.status. Status semua tagihan (siswa, tarif) yang sama
        ikut diperbarui karena pembayarannya dijumlahkan bersama.
        """
        settlement = BillingService.compute_settlement(charge.student_id, charge.tariff_id)
        siblings = Charge.query.filter_by(student_id=charge.student_id, tariff_id=charge.tariff_id).all()
        for sibling in siblings:
            sibling.status = settlement.status
        return settlement

    # ==========================================
    # TARIF
    # ==========================================
    @staticmethod
    def create_tariff(name, amount, academic_year_id, description=None):
        name = (name or '').strip()
        if not name:
            raise ValidationError('Nama tarif wajib diisi', field='name')
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError('Nominal tarif harus bilangan bulat lebih dari 0', field='amount')
        _require(AcademicYear, academic_year_id, 'Tahun ajaran')

        if Tariff.query.filter_by(name=name, academic_year_id=academic_year_id).first():
            raise ConflictError(f'Tarif {name} sudah ada di tahun ajaran ini', field='name')

        tariff = Tariff(name=name, amount=amount, academic_year_id=academic_year_id, description=description)
        try:
            db.session.add(tariff)
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise conflict_from_integrity(e) from e

        current_app.logger.info("Tarif %s (Rp %s) dibuat", tariff.name, tariff.amount)
        return tariff

    @staticmethod
    def list_tariffs(academic_year_id=None):
        query = Tariff.query
        if academic_year_id:
            query = query.filter_by(academic_year_id=academic_year_id)
        return query.order_by(Tariff.name).all()

    # ==========================================
    # TAGIHAN
    # ==========================================
    @staticmethod
    def _invoice_number(tariff_id, student_id, month=None):
        # Format: INV/YYYYMM/<tarif>/<siswa>[/<bulan>]
        number = f"INV/{utcnow().strftime('%Y%m')}/{tariff_id}/{student_id}"
        return f"{number}/{month}" if month else number

    @staticmethod
    def _find_charge(student_id, tariff_id, academic_year_id, month):
        query = Charge.query.filter_by(student_id=student_id, tariff_id=tariff_id, academic_year_id=academic_year_id)
        if month:
            query = query.filter(Charge.month == month)
        else:
            query = query.filter(Charge.month.is_(None))
        return query.first()

    @staticmethod
    def _default_due_date():
        return date.today() + timedelta(days=current_app.config.get('CHARGE_DUE_DAYS', 14))

    @staticmethod
    def _new_charge(student_id, tariff, academic_year_id, month, due_date):
        charge = Charge(
            invoice_number=BillingService._invoice_number(tariff.id, student_id, month),
            student_id=student_id,
            tariff_id=tariff.id,
            academic_year_id=academic_year_id,
            month=month,
            status=ChargeStatus.UNPAID,
            due_date=due_date or BillingService._default_due_date(),
        )
        db.session.add(charge)
        db.session.flush()
        # Pembayaran lama atas tarif yang sama ikut dihitung
        BillingService.refresh_charge_status(charge)
        return charge

    @staticmethod
    def create_charge(student_id, tariff_id, academic_year_id=None, month=None, due_date=None):
        """Terbitkan satu tagihan. Duplikat (siswa, tarif, tahun ajaran, bulan) ditolak."""
        _require(Student, student_id, 'Siswa')
        tariff = _require(Tariff, tariff_id, 'Tarif')
        academic_year_id = academic_year_id or tariff.academic_year_id
        _require(AcademicYear, academic_year_id, 'Tahun ajaran')
        if academic_year_id != tariff.academic_year_id:
            raise ValidationError(
                f'Tarif {tariff.name} hanya berlaku untuk tahun ajaran {tariff.academic_year.name}',
                field='academic_year_id',
            )
        month = (month or '').strip() or None

        if BillingService._find_charge(student_id, tariff_id, academic_year_id, month):
            raise ConflictError('Tagihan untuk periode ini sudah ada', field='tariff_id')

        try:
            charge = BillingService._new_charge(student_id, tariff, academic_year_id, month, due_date)
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise conflict_from_integrity(e) from e
        except Exception as e:
            db.session.rollback()
            raise e

        current_app.logger.info("Tagihan %s diterbitkan", charge.invoice_number)
        return charge

    @staticmethod
    def generate_charges(tariff_id, month=None, student_ids=None, due_date=None):
        """Terbitkan tagihan massal untuk semua siswa (atau daftar tertentu). Yang sudah ada dilewati."""
        tariff = _require(Tariff, tariff_id, 'Tarif')
        month = (month or '').strip() or None

        query = Student.query
        if student_ids is not None:
            query = query.filter(Student.id.in_(student_ids))
        students = query.order_by(Student.id).all()
        if not students:
            raise ValidationError('Tidak ada siswa untuk ditagih', field='student_ids')

        created, skipped = [], 0
        try:
            for student in students:
                if BillingService._find_charge(student.id, tariff.id, tariff.academic_year_id, month):
                    skipped += 1
                    continue
                created.append(
                    BillingService._new_charge(student.id, tariff, tariff.academic_year_id, month, due_date)
                )
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise conflict_from_integrity(e) from e
        except Exception as e:
            db.session.rollback()
            raise e

        current_app.logger.info(
            "Generate tagihan %s%s: %s dibuat, %s dilewati",
            tariff.name, f' ({month})' if month else '', len(created), skipped,
        )
        return {'created': created, 'skipped': skipped}

    @staticmethod
    def list_charges_for_student(student_id, caller=None, authorize=None):
        """
        Daftar tagihan siswa dengan status hasil hitung langsung (bukan dari cache).
        authorize(caller, class_room) dipanggil jika diberikan; False -> Forbidden.
        """
        student = _authorized_student(student_id, caller, authorize)

        charges = Charge.query.filter_by(student_id=student.id).order_by(Charge.id).all()
        settlements = {}
        rows = []
        for charge in charges:
            if charge.tariff_id not in settlements:
                settlements[charge.tariff_id] = BillingService.compute_settlement(student.id, charge.tariff_id)
            settlement = settlements[charge.tariff_id]

            row = charge.to_dict()
            row.update({
                'total_paid': settlement.total_paid,
                'remaining': settlement.remaining,
                'settled': settlement.settled,
                'status': settlement.status.name,
                'status_label': settlement.status.value,
            })
            rows.append(row)
        return rows

    @staticmethod
    def student_summary(student_id, caller=None, authorize=None):
        """Ringkasan keuangan siswa: total tagihan, terbayar, dan sisa per tarif."""
        student = _authorized_student(student_id, caller, authorize)
        tariff_ids = [
            tariff_id for (tariff_id,) in
            db.session.query(Charge.tariff_id).filter_by(student_id=student.id).distinct().order_by(Charge.tariff_id)
        ]

        settlements = [BillingService.compute_settlement(student.id, tariff_id) for tariff_id in tariff_ids]
        return {
            'student': {'id': student.id, 'nis': student.nis, 'full_name': student.full_name},
            'total_nominal': sum(s.nominal for s in settlements),
            'total_paid': sum(s.total_paid for s in settlements),
            'total_remaining': sum(s.remaining for s in settlements),
            'unsettled': sum(1 for s in settlements if not s.settled),
            'settlements': [s.to_dict() for s in settlements],
        }

    # ==========================================
    # REKAP (ADMIN / TU)
    # ==========================================
    @staticmethod
    def _charges_with_settlement(academic_year_id=None):
        """Pasangan (tagihan, settlement live) untuk semua tagihan, satu settlement per (siswa, tarif)."""
        query = Charge.query
        if academic_year_id:
            query = query.filter(Charge.academic_year_id == academic_year_id)
        charges = query.order_by(Charge.academic_year_id.desc(), Charge.student_id, Charge.id).all()

        settlements = {}
        for charge in charges:
            key = (charge.student_id, charge.tariff_id)
            if key not in settlements:
                settlements[key] = BillingService.compute_settlement(*key)
        return [(charge, settlements[(charge.student_id, charge.tariff_id)]) for charge in charges], settlements

    @staticmethod
    def outstanding_charges(academic_year_id=None):
        """Tagihan yang belum lunas (Belum Lunas / Cicilan) beserta jumlah terbayar dan sisanya."""
        pairs, _ = BillingService._charges_with_settlement(academic_year_id)

        rows = []
        for charge, settlement in pairs:
            if settlement.settled:
                continue
            row = charge.to_dict()
            row.update({
                'student': {
                    'id': charge.student.id,
                    'nis': charge.student.nis,
                    'full_name': charge.student.full_name,
                    'class_name': charge.student.current_class.name if charge.student.current_class else None,
                },
                'total_paid': settlement.total_paid,
                'remaining': settlement.remaining,
                'status': settlement.status.name,
                'status_label': settlement.status.value,
            })
            rows.append(row)
        return rows

    @staticmethod
    def stats(academic_year_id=None):
        """
        Rekap keuangan: jumlah tagihan per status, serta total tagihan, terbayar dan sisa.
        Nominal dihitung sekali per (siswa, tarif) karena pembayarannya dijumlahkan bersama.
        """
        pairs, settlements = BillingService._charges_with_settlement(academic_year_id)

        by_status = {status.name: 0 for status in ChargeStatus}
        for _, settlement in pairs:
            by_status[settlement.status.name] += 1

        return {
            'total': len(pairs),
            'status': by_status,
            'total_nominal': sum(s.nominal for s in settlements.values()),
            'total_paid': sum(s.total_paid for s in settlements.values()),
            'total_remaining': sum(s.remaining for s in settlements.values()),
        }

    # ==========================================
    # PEMBAYARAN
    # ==========================================
    @staticmethod
    def record_payment(charge_id, amount, method, note=None, paid_at=None, recorded_by=None):
        """
        Catat pembayaran atas satu tagihan lalu perbarui status tagihan terkait.
        Jumlah harus bilangan bulat > 0 dan (kecuali BILLING_ALLOW_OVERPAYMENT) tidak melebihi sisa tagihan.
        """
        _validate_amount(amount)

        method = (method or '').strip().upper()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f'Metode pembayaran tidak dikenal: {method or "-"}', field='method')

        if paid_at is None:
            paid_at = utcnow()
        elif not isinstance(paid_at, date):
            raise ValidationError('Tanggal pembayaran tidak valid', field='date')
        elif not isinstance(paid_at, datetime):
            paid_at = datetime.combine(paid_at, datetime.min.time())

        try:
            charge = Charge.query.filter_by(id=charge_id).with_for_update().first()
            if not charge:
                raise NotFound('Tagihan', charge_id)

            # Kunci semua tagihan (siswa, tarif) yang sama dengan urutan id agar status tidak balapan
            Charge.query.filter_by(student_id=charge.student_id, tariff_id=charge.tariff_id) \
                .order_by(Charge.id).with_for_update().all()

            if not current_app.config.get('BILLING_ALLOW_OVERPAYMENT', False):
                paid_on_charge = db.session.query(func.coalesce(func.sum(Payment.amount), 0)) \
                    .filter(Payment.charge_id == charge.id).scalar()
                remaining = charge.tariff.amount - int(paid_on_charge)
                if amount > remaining:
                    raise OverpaymentError(amount, max(remaining, 0))

            payment = Payment(
                charge_id=charge.id,
                amount=amount,
                method=method,
                note=note or None,
                date=paid_at,
                recorded_by_id=getattr(recorded_by, 'id', None),
            )
            db.session.add(payment)
            db.session.flush()

            settlement = BillingService.refresh_charge_status(charge)
            record_audit(
                'RECORD_PAYMENT',
                f'{charge.invoice_number}: Rp {amount} via {method} (total {settlement.total_paid})',
                user=recorded_by,
            )
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            raise e

        current_app.logger.info(
            "Pembayaran Rp %s untuk %s dicatat, status %s",
            amount, charge.invoice_number, settlement.status.name,
        )
        return payment, settlement

    @staticmethod
    def list_payments_for_student(student_id, caller=None, authorize=None):
        student = _authorized_student(student_id, caller, authorize)
        rows = (
            db.session.query(Payment, Charge, Tariff)
            .join(Charge, Payment.charge_id == Charge.id)
            .join(Tariff, Charge.tariff_id == Tariff.id)
            .filter(Charge.student_id == student.id)
            .order_by(Payment.date.desc(), Payment.id.desc())
            .all()
        )
        result = []
        for payment, charge, tariff in rows:
            row = payment.to_dict()
            row.update({'invoice_number': charge.invoice_number, 'tariff_name': tariff.name, 'month': charge.month})
            result.append(row)
        return result

    @staticmethod
    def list_payments_for_charge(charge_id):
        charge = _require(Charge, charge_id, 'Tagihan')
        payments = Payment.query.filter_by(charge_id=charge.id).order_by(Payment.date, Payment.id).all()
        total_paid = sum(p.amount for p in payments)
        return {
            'charge': charge.to_dict(),
            'payments': [p.to_dict() for p in payments],
            'total_paid': total_paid,
            'remaining': max(charge.tariff.amount - total_paid, 0),
        }
