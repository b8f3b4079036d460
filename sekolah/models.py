from datetime import datetime, timezone
import enum

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, UniqueConstraint, event, inspect
from sqlalchemy.orm import object_session
from werkzeug.security import generate_password_hash, check_password_hash

from sekolah.exceptions import ImmutableRecordError
from sekolah.extensions import db


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


# ==========================================
# 0. BASE MODEL
# ==========================================
class BaseModel(db.Model):
    """
    Kelas Abstract yang diwarisi oleh semua model.
    Menyediakan Timestamp otomatis.
    """
    __abstract__ = True

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def save(self):
        db.session.add(self)
        db.session.commit()


# ==========================================
# 1. ENUMS
# ==========================================
class UserRole(enum.Enum):
    ADMIN = "admin"
    GURU = "teacher"
    SISWA = "student"
    TU = "tata_usaha"


class Gender(enum.Enum):
    L = "Laki-laki"
    P = "Perempuan"


class ApplicantState(enum.Enum):
    SUBMITTED = "Terkirim"
    UNDER_REVIEW = "Tahap Verifikasi"
    ACCEPTED = "Diterima"
    REJECTED = "Tidak Diterima"

    @property
    def is_terminal(self):
        return not APPLICANT_TRANSITIONS[self]

    def can_transition_to(self, target):
        return target in APPLICANT_TRANSITIONS[self]


# Hanya maju, status akhir tidak bisa diubah lagi
APPLICANT_TRANSITIONS = {
    ApplicantState.SUBMITTED: {ApplicantState.UNDER_REVIEW, ApplicantState.ACCEPTED, ApplicantState.REJECTED},
    ApplicantState.UNDER_REVIEW: {ApplicantState.ACCEPTED, ApplicantState.REJECTED},
    ApplicantState.ACCEPTED: set(),
    ApplicantState.REJECTED: set(),
}


class DocumentStatus(enum.Enum):
    PENDING = "Belum Diterima"
    COMPLETE = "Lengkap"
    INCOMPLETE = "Kurang"


class RegistrationPaymentStatus(enum.Enum):
    UNPAID = "Belum Bayar"
    PAID = "Lunas"


class ChargeStatus(enum.Enum):
    UNPAID = "Belum Lunas"
    PARTIAL = "Cicilan"
    PAID = "Lunas"


PAYMENT_METHODS = {
    'TUNAI': 'Tunai / Cash',
    'TRANSFER': 'Transfer Bank',
    'QRIS': 'QRIS',
}


# ==========================================
# 2. SYSTEM
# ==========================================
class AuditLog(db.Model):
    """Mencatat siapa melakukan apa (Security)"""
    __tablename__ = 'audit_logs'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    action = db.Column(db.String(50))  # ACCEPT_APPLICANT, REJECT_APPLICANT, RECORD_PAYMENT
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(50))
    timestamp = db.Column(db.DateTime, default=utcnow)


# ==========================================
# 3. ACADEMIC CORE
# ==========================================
class AcademicYear(BaseModel):
    __tablename__ = 'academic_years'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(20), nullable=False)  # 2025/2026
    semester = db.Column(db.String(10), nullable=False)  # Ganjil/Genap
    is_active = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'semester': self.semester, 'is_active': self.is_active}


class Teacher(BaseModel):
    __tablename__ = 'teachers'
    id = db.Column(db.Integer, primary_key=True)
    nip = db.Column(db.String(20), unique=True)
    full_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))

    homeroom_class = db.relationship('ClassRoom', backref='homeroom_teacher', uselist=False)


class ClassRoom(BaseModel):
    __tablename__ = 'class_rooms'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(20), nullable=False)
    grade_level = db.Column(db.Integer)
    homeroom_teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id'))
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'))

    students = db.relationship('Student', backref='current_class', lazy=True)


# ==========================================
# 4. USERS & PROFILES
# ==========================================
class Student(BaseModel):
    __tablename__ = 'students'
    id = db.Column(db.Integer, primary_key=True)
    current_class_id = db.Column(db.Integer, db.ForeignKey('class_rooms.id'))
    nis = db.Column(db.String(20), unique=True, nullable=False)
    nisn = db.Column(db.String(20), unique=True, nullable=True)
    full_name = db.Column(db.String(100), nullable=False)
    gender = db.Column(db.Enum(Gender))
    place_of_birth = db.Column(db.String(50))
    date_of_birth = db.Column(db.Date)
    address = db.Column(db.Text)
    photo_url = db.Column(db.String(255))  # Path foto, penyimpanan file di luar sistem ini

    guardians = db.relationship('Guardian', backref='student', lazy=True)
    charges = db.relationship('Charge', backref='student', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'nis': self.nis,
            'nisn': self.nisn,
            'full_name': self.full_name,
            'gender': self.gender.name if self.gender else None,
            'place_of_birth': self.place_of_birth,
            'date_of_birth': _iso(self.date_of_birth),
            'address': self.address,
            'class_id': self.current_class_id,
            'guardians': [g.to_dict() for g in self.guardians],
        }


class Guardian(BaseModel):
    __tablename__ = 'guardians'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False)
    full_name = db.Column(db.String(100), nullable=False)
    relationship = db.Column(db.String(20))  # Ayah, Ibu, Wali
    job = db.Column(db.String(100))
    phone = db.Column(db.String(20))

    def to_dict(self):
        return {'full_name': self.full_name, 'relationship': self.relationship, 'job': self.job, 'phone': self.phone}


class User(UserMixin, BaseModel):
    """Akun login. Terikat ke tepat satu Student (SISWA), satu Teacher (GURU), atau tidak keduanya."""
    __tablename__ = 'users'
    __table_args__ = (
        CheckConstraint(
            "(role = 'SISWA' AND student_id IS NOT NULL AND teacher_id IS NULL) OR "
            "(role = 'GURU' AND teacher_id IS NOT NULL AND student_id IS NULL) OR "
            "(role IN ('ADMIN', 'TU') AND student_id IS NULL AND teacher_id IS NULL)",
            name='ck_users_role_owner',
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(UserRole), default=UserRole.SISWA, nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), unique=True, nullable=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id'), unique=True, nullable=True)
    last_login = db.Column(db.DateTime)

    # Jika True = User akan dialihkan ke halaman ganti password saat login
    must_change_password = db.Column(db.Boolean, default=True)

    student = db.relationship('Student', backref=db.backref('account', uselist=False))
    teacher = db.relationship('Teacher', backref=db.backref('account', uselist=False))

    def set_password(self, password, method=None):
        if method:
            self.password_hash = generate_password_hash(password, method=method)
        else:
            self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def has_role(self, *roles):
        return self.role in roles

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'role': self.role.name,
            'student_id': self.student_id,
            'teacher_id': self.teacher_id,
            'must_change_password': self.must_change_password,
        }


# ==========================================
# 5. PPDB (PENDAFTARAN)
# ==========================================
class Applicant(BaseModel):
    __tablename__ = 'applicants'
    id = db.Column(db.Integer, primary_key=True)
    registration_no = db.Column(db.String(20), unique=True)
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=False)

    # --- Status ---
    state = db.Column(db.Enum(ApplicantState), default=ApplicantState.SUBMITTED, nullable=False)
    document_status = db.Column(db.Enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False)
    payment_status = db.Column(db.Enum(RegistrationPaymentStatus), default=RegistrationPaymentStatus.UNPAID,
                               nullable=False)
    rejection_reason = db.Column(db.String(255))
    decided_at = db.Column(db.DateTime)

    # Diisi sekali saat diterima, tidak boleh berubah setelahnya
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), unique=True, nullable=True)

    # --- Data Pribadi ---
    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(20))
    nisn = db.Column(db.String(20))
    gender = db.Column(db.Enum(Gender))
    place_of_birth = db.Column(db.String(50))
    date_of_birth = db.Column(db.Date)
    address = db.Column(db.Text)
    previous_school = db.Column(db.String(100))

    # --- Data Orang Tua / Wali ---
    father_name = db.Column(db.String(100))
    father_job = db.Column(db.String(100))
    father_phone = db.Column(db.String(20))
    mother_name = db.Column(db.String(100))
    mother_job = db.Column(db.String(100))
    mother_phone = db.Column(db.String(20))
    guardian_name = db.Column(db.String(100))
    guardian_job = db.Column(db.String(100))
    guardian_phone = db.Column(db.String(20))

    academic_year = db.relationship('AcademicYear', backref='applicants')
    student = db.relationship('Student', backref=db.backref('applicant', uselist=False))

    def to_dict(self):
        return {
            'id': self.id,
            'registration_no': self.registration_no,
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'nisn': self.nisn,
            'gender': self.gender.name if self.gender else None,
            'place_of_birth': self.place_of_birth,
            'date_of_birth': _iso(self.date_of_birth),
            'address': self.address,
            'previous_school': self.previous_school,
            'father_name': self.father_name,
            'mother_name': self.mother_name,
            'guardian_name': self.guardian_name,
            'state': self.state.name,
            'document_status': self.document_status.name,
            'payment_status': self.payment_status.name,
            'rejection_reason': self.rejection_reason,
            'academic_year_id': self.academic_year_id,
            'student_id': self.student_id,
            'created_at': _iso(self.created_at),
        }


# ==========================================
# 6. FINANCE
# ==========================================
class Tariff(BaseModel):
    """Jenis tagihan (SPP, Uang Pendaftaran, ...) dengan nominal per tahun ajaran."""
    __tablename__ = 'tariffs'
    __table_args__ = (
        UniqueConstraint('name', 'academic_year_id', name='uq_tariff_name_year'),
        CheckConstraint('amount > 0', name='ck_tariffs_amount_positive'),
    )
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    amount = db.Column(db.Integer, nullable=False)  # Rupiah, tanpa desimal
    description = db.Column(db.String(255))
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=False)

    academic_year = db.relationship('AcademicYear', backref='tariffs')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'amount': self.amount,
            'description': self.description,
            'academic_year_id': self.academic_year_id,
        }


class Charge(BaseModel):
    """Tagihan seorang siswa atas satu tarif. `month` kosong = tagihan sekali bayar."""
    __tablename__ = 'charges'
    __table_args__ = (
        UniqueConstraint('student_id', 'tariff_id', 'academic_year_id', 'month', name='uq_charge_period'),
        db.Index('ix_charges_student_tariff', 'student_id', 'tariff_id'),
    )
    id = db.Column(db.Integer, primary_key=True)

    # Format: INV/202408/<tarif>/<siswa>[/<bulan>]
    invoice_number = db.Column(db.String(60), unique=True)

    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False)
    tariff_id = db.Column(db.Integer, db.ForeignKey('tariffs.id'), nullable=False)
    academic_year_id = db.Column(db.Integer, db.ForeignKey('academic_years.id'), nullable=False)
    month = db.Column(db.String(20), nullable=True)

    # Cache dari BillingService.compute_settlement, hanya ditulis oleh refresh_charge_status
    status = db.Column(db.Enum(ChargeStatus), default=ChargeStatus.UNPAID, nullable=False)
    due_date = db.Column(db.Date)

    tariff = db.relationship('Tariff', backref='charges')
    academic_year = db.relationship('AcademicYear')
    payments = db.relationship('Payment', backref='charge', lazy=True, order_by='Payment.date')

    def to_dict(self):
        return {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'student_id': self.student_id,
            'tariff_id': self.tariff_id,
            'tariff_name': self.tariff.name if self.tariff else None,
            'nominal': self.tariff.amount if self.tariff else None,
            'academic_year_id': self.academic_year_id,
            'month': self.month,
            'status': self.status.name,
            'status_label': self.status.value,
            'due_date': _iso(self.due_date),
        }


class Payment(BaseModel):
    """Catatan pembayaran. Append-only: tidak pernah diubah atau dihapus."""
    __tablename__ = 'payments'
    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payments_amount_positive'),
    )
    id = db.Column(db.Integer, primary_key=True)
    charge_id = db.Column(db.Integer, db.ForeignKey('charges.id'), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(30))  # TUNAI, TRANSFER, QRIS
    note = db.Column(db.Text)
    date = db.Column(db.DateTime, default=utcnow)

    # Staff/Admin yang menginput (optional)
    recorded_by_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    def to_dict(self):
        return {
            'id': self.id,
            'charge_id': self.charge_id,
            'amount': self.amount,
            'method': self.method,
            'note': self.note,
            'date': _iso(self.date),
            'recorded_by_id': self.recorded_by_id,
        }


# ==========================================
# 7. ORM GUARDS
# ==========================================
@event.listens_for(Payment, 'before_update')
def _reject_payment_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise ImmutableRecordError(f'Pembayaran #{target.id} tidak boleh diubah')


@event.listens_for(Payment, 'before_delete')
def _reject_payment_delete(mapper, connection, target):
    raise ImmutableRecordError(f'Pembayaran #{target.id} tidak boleh dihapus')


@event.listens_for(Applicant, 'before_update')
def _freeze_applicant_student(mapper, connection, target):
    history = inspect(target).attrs.student_id.history
    if history.deleted and history.deleted[0] is not None:
        raise ImmutableRecordError(
            f'Pendaftaran #{target.id} sudah terhubung ke siswa #{history.deleted[0]}'
        )
