# sekolah/services/admission_service.py
from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from sekolah.exceptions import (
    AlreadyProcessed,
    ConflictError,
    InvalidTransition,
    NotFound,
    SekolahError,
    ValidationError,
)
from sekolah.extensions import db
from sekolah.models import (
    Applicant,
    ApplicantState,
    AcademicYear,
    DocumentStatus,
    Gender,
    RegistrationPaymentStatus,
    UserRole,
    utcnow,
)
from sekolah.services.account_service import AccountService
from sekolah.services.student_service import StudentService
from sekolah.utils.audit import record_audit
from sekolah.utils.db import conflict_from_integrity
from sekolah.utils.parsing import coerce_enum, parse_date
from sekolah.utils.uploads import extract_field, normalize_gender

# Field formulir yang boleh diisi pendaftar / diedit petugas
IDENTITY_FIELDS = (
    'full_name', 'email', 'phone', 'nisn', 'gender', 'place_of_birth', 'date_of_birth',
    'address', 'previous_school',
    'father_name', 'father_job', 'father_phone',
    'mother_name', 'mother_job', 'mother_phone',
    'guardian_name', 'guardian_job', 'guardian_phone',
)
REQUIRED_FIELDS = ('full_name', 'email')

# Alias header kolom pada file import (CSV/XLSX)
IMPORT_COLUMNS = {
    'full_name': ('nama lengkap', 'nama_lengkap', 'nama', 'full_name'),
    'email': ('email', 'e-mail'),
    'phone': ('no hp', 'no_hp', 'nomor hp', 'telepon', 'phone'),
    'nisn': ('nisn',),
    'gender': ('jenis kelamin', 'jenis_kelamin', 'gender', 'jk'),
    'place_of_birth': ('tempat lahir', 'tempat_lahir'),
    'date_of_birth': ('tanggal lahir', 'tanggal_lahir', 'tgl lahir'),
    'address': ('alamat', 'address'),
    'previous_school': ('asal sekolah', 'asal_sekolah', 'sekolah asal'),
    'father_name': ('nama ayah', 'nama_ayah'),
    'father_phone': ('no hp ayah', 'hp ayah'),
    'mother_name': ('nama ibu', 'nama_ibu'),
    'mother_phone': ('no hp ibu', 'hp ibu'),
    'guardian_name': ('nama wali', 'nama_wali'),
    'guardian_phone': ('no hp wali', 'hp wali'),
}


def _clean_identity(data):
    """Normalisasi nilai field identitas: trim string, parse gender & tanggal."""
    cleaned = {}
    for key in IDENTITY_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, str):
            value = value.strip()
        if key == 'gender':
            value = coerce_enum(Gender, value, 'gender')
        elif key == 'date_of_birth':
            value = parse_date(value, 'date_of_birth')
        elif value == '':
            value = None
        elif isinstance(value, str):
            _check_length(key, value)
        cleaned[key] = value

    for key in REQUIRED_FIELDS:
        if key in cleaned and not cleaned[key]:
            raise ValidationError(f'{key} wajib diisi', field=key)
    if cleaned.get('email') and '@' not in cleaned['email']:
        raise ValidationError('Format email tidak valid', field='email')
    return cleaned


def _check_length(key, value):
    # Batas panjang kolom VARCHAR
    max_length = getattr(Applicant.__table__.c[key].type, 'length', None)
    if max_length and len(value) > max_length:
        raise ValidationError(f'{key} maksimal {max_length} karakter', field=key)


def _require_year(academic_year_id):
    if not academic_year_id:
        raise ValidationError('Tahun ajaran wajib diisi', field='academic_year_id')
    year = db.session.get(AcademicYear, academic_year_id)
    if not year:
        raise NotFound('Tahun ajaran', academic_year_id)
    return year


def _guardians_of(applicant):
    guardians = []
    for prefix, relationship in (('father', 'Ayah'), ('mother', 'Ibu'), ('guardian', 'Wali')):
        name = getattr(applicant, f'{prefix}_name')
        if name:
            guardians.append({
                'full_name': name,
                'relationship': relationship,
                'job': getattr(applicant, f'{prefix}_job'),
                'phone': getattr(applicant, f'{prefix}_phone'),
            })
    return guardians


class AdmissionService:
    # ==========================================
    # PENDAFTARAN (PUBLIK)
    # ==========================================
    @staticmethod
    def submit(data):
        """Simpan formulir PPDB baru dengan status SUBMITTED."""
        for key in REQUIRED_FIELDS:
            if not data.get(key):
                raise ValidationError(f'{key} wajib diisi', field=key)
        _require_year(data.get('academic_year_id'))
        fields = _clean_identity(data)

        applicant = Applicant(
            academic_year_id=data['academic_year_id'],
            state=ApplicantState.SUBMITTED,
            document_status=DocumentStatus.PENDING,
            payment_status=RegistrationPaymentStatus.UNPAID,
            **fields,
        )

        try:
            db.session.add(applicant)
            db.session.flush()
            # Format: REG + Tahun + 5 digit id (REG202500001)
            applicant.registration_no = f"REG{utcnow().year}{applicant.id:05d}"
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise conflict_from_integrity(e) from e
        except Exception as e:
            db.session.rollback()
            raise e

        current_app.logger.info("Pendaftar baru %s (%s)", applicant.registration_no, applicant.email)
        return applicant

    @staticmethod
    def lookup_status(email):
        """Cek status pendaftaran berdasarkan email (persis, peka huruf besar/kecil)."""
        email = (email or '').strip()
        if not email:
            raise ValidationError('Email wajib diisi', field='email')
        applicant = Applicant.query.filter(Applicant.email == email).first()
        if not applicant:
            raise NotFound('Pendaftaran', email, message='Data pendaftaran dengan email ini tidak ditemukan')
        return applicant

    # ==========================================
    # ADMIN / TU
    # ==========================================
    @staticmethod
    def get_applicant(applicant_id):
        applicant = db.session.get(Applicant, applicant_id)
        if not applicant:
            raise NotFound('Pendaftar', applicant_id)
        return applicant

    @staticmethod
    def list_applicants(state=None, academic_year_id=None):
        query = Applicant.query
        if state:
            query = query.filter(Applicant.state == coerce_enum(ApplicantState, state, 'state'))
        if academic_year_id:
            query = query.filter(Applicant.academic_year_id == academic_year_id)
        return query.order_by(Applicant.created_at.desc(), Applicant.id.desc()).all()

    @staticmethod
    def stats(academic_year_id=None):
        """Rekap jumlah pendaftar per status."""
        def _count_by(column, enum_cls):
            query = db.session.query(column, func.count(Applicant.id))
            if academic_year_id:
                query = query.filter(Applicant.academic_year_id == academic_year_id)
            counts = dict(query.group_by(column).all())
            return {member.name: counts.get(member, 0) for member in enum_cls}

        by_state = _count_by(Applicant.state, ApplicantState)
        return {
            'total': sum(by_state.values()),
            'state': by_state,
            'document_status': _count_by(Applicant.document_status, DocumentStatus),
            'payment_status': _count_by(Applicant.payment_status, RegistrationPaymentStatus),
        }

    @staticmethod
    def review(applicant_id, patch, actor=None):
        """
        Edit data pendaftar dan/atau status dokumen & pembayaran.
        Pendaftar SUBMITTED otomatis maju ke UNDER_REVIEW; pendaftar berstatus akhir tidak bisa diedit.
        """
        applicant = AdmissionService._lock_applicant(applicant_id)
        if applicant.state.is_terminal:
            raise AlreadyProcessed(
                f'Pendaftaran sudah berstatus {applicant.state.value}, data tidak bisa diubah',
                applicant_id=applicant.id,
            )

        unknown = set(patch) - set(IDENTITY_FIELDS) - {'academic_year_id', 'document_status', 'payment_status'}
        if unknown:
            field = sorted(unknown)[0]
            raise ValidationError(f'Field {field} tidak bisa diubah', field=field)

        fields = _clean_identity(patch)
        if patch.get('academic_year_id'):
            _require_year(patch['academic_year_id'])
            fields['academic_year_id'] = patch['academic_year_id']

        document_status = coerce_enum(DocumentStatus, patch.get('document_status'), 'document_status')
        payment_status = coerce_enum(RegistrationPaymentStatus, patch.get('payment_status'), 'payment_status')

        try:
            for key, value in fields.items():
                setattr(applicant, key, value)
            if document_status:
                applicant.document_status = document_status
            if payment_status:
                applicant.payment_status = payment_status

            if applicant.state == ApplicantState.SUBMITTED:
                AdmissionService._transition(applicant, ApplicantState.UNDER_REVIEW)

            record_audit('REVIEW_APPLICANT', f'{applicant.registration_no}: {sorted(patch)}', user=actor)
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise conflict_from_integrity(e) from e
        except Exception as e:
            db.session.rollback()
            raise e

        return applicant

    @staticmethod
    def accept(applicant_id, password=None, actor=None):
        """
        Terima pendaftar: buat Student + Guardian + akun SISWA dalam satu transaksi.
        Gagal di langkah mana pun = tidak ada yang tersimpan dan pendaftar tetap belum diterima.
        """
        applicant = AdmissionService._lock_applicant(applicant_id)
        AdmissionService._ensure_open(applicant)

        try:
            student = StudentService.new_student(
                full_name=applicant.full_name,
                nisn=applicant.nisn or None,
                gender=applicant.gender,
                place_of_birth=applicant.place_of_birth,
                date_of_birth=applicant.date_of_birth,
                address=applicant.address,
                guardians=_guardians_of(applicant),
            )

            account = AccountService.provision(
                applicant.email,
                password or current_app.config['DEFAULT_STUDENT_PASSWORD'],
                UserRole.SISWA,
                student=student,
                commit=False,
            )

            # Klaim pendaftar: hanya berhasil jika belum pernah diterima/ditolak
            claimed = db.session.execute(
                update(Applicant)
                .where(
                    Applicant.id == applicant.id,
                    Applicant.student_id.is_(None),
                    Applicant.state.notin_([ApplicantState.ACCEPTED, ApplicantState.REJECTED]),
                )
                .values(
                    student_id=student.id,
                    state=ApplicantState.ACCEPTED,
                    document_status=DocumentStatus.COMPLETE,
                    decided_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                raise AlreadyProcessed(applicant_id=applicant.id)

            record_audit(
                'ACCEPT_APPLICANT',
                f'{applicant.registration_no} -> siswa #{student.id} (NIS {student.nis}), akun {account.email}',
                user=actor,
            )
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            if AdmissionService._converted_meanwhile(applicant_id):
                raise AlreadyProcessed(applicant_id=applicant_id) from e
            raise conflict_from_integrity(e) from e
        except ConflictError as e:
            # Email akun bentrok karena pemanggil lain sudah menerima pendaftar ini lebih dulu
            db.session.rollback()
            if AdmissionService._converted_meanwhile(applicant_id):
                raise AlreadyProcessed(applicant_id=applicant_id) from e
            raise e
        except Exception as e:
            db.session.rollback()
            raise e

        current_app.logger.info(
            "Pendaftar %s diterima sebagai siswa NIS %s", applicant.registration_no, student.nis
        )
        return student

    @staticmethod
    def reject(applicant_id, reason=None, actor=None):
        """Tolak pendaftar. Menolak ulang pendaftar yang sudah ditolak tidak mengubah apa pun."""
        applicant = AdmissionService._lock_applicant(applicant_id)
        if applicant.state == ApplicantState.REJECTED:
            return applicant
        if applicant.state == ApplicantState.ACCEPTED or applicant.student_id is not None:
            raise AlreadyProcessed('Pendaftar sudah diterima, tidak bisa ditolak', applicant_id=applicant.id)

        try:
            claimed = db.session.execute(
                update(Applicant)
                .where(
                    Applicant.id == applicant.id,
                    Applicant.student_id.is_(None),
                    Applicant.state.notin_([ApplicantState.ACCEPTED, ApplicantState.REJECTED]),
                )
                .values(
                    state=ApplicantState.REJECTED,
                    document_status=DocumentStatus.INCOMPLETE,
                    rejection_reason=reason or None,
                    decided_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                raise AlreadyProcessed(applicant_id=applicant.id)

            record_audit('REJECT_APPLICANT', f'{applicant.registration_no}: {reason or "-"}', user=actor)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            raise e

        current_app.logger.info("Pendaftar %s ditolak", applicant.registration_no)
        return applicant

    @staticmethod
    def import_rows(rows, academic_year_id):
        """
        Import massal dari file upload. rows: list (nomor_baris, dict_kolom) dari iter_upload_rows.
        Baris yang gagal dilewati dan dilaporkan; baris lain tetap tersimpan.
        """
        _require_year(academic_year_id)
        created, errors = [], []

        for row_no, row in rows:
            data = {key: extract_field(row, *aliases) for key, aliases in IMPORT_COLUMNS.items()}
            data = {k: v for k, v in data.items() if v}
            if not data:
                continue

            if 'gender' in data:
                data['gender'] = normalize_gender(data['gender'])
            data['academic_year_id'] = academic_year_id

            try:
                created.append(AdmissionService.submit(data))
            except SekolahError as e:
                errors.append({'row': row_no, 'message': e.message, 'field': e.field})
            except SQLAlchemyError as e:
                current_app.logger.warning("Import baris %s gagal disimpan: %s", row_no, e)
                errors.append({'row': row_no, 'message': 'Data baris ini tidak dapat disimpan', 'field': None})

        current_app.logger.info(
            "Import pendaftar: %s berhasil, %s gagal", len(created), len(errors)
        )
        return {'created': created, 'errors': errors}

    # ==========================================
    # HELPER
    # ==========================================
    @staticmethod
    def _lock_applicant(applicant_id):
        applicant = Applicant.query.filter_by(id=applicant_id).with_for_update().first()
        if not applicant:
            raise NotFound('Pendaftar', applicant_id)
        return applicant

    @staticmethod
    def _ensure_open(applicant):
        if applicant.student_id is not None or applicant.state == ApplicantState.ACCEPTED:
            raise AlreadyProcessed(applicant_id=applicant.id)
        if applicant.state == ApplicantState.REJECTED:
            raise AlreadyProcessed('Pendaftar sudah ditolak', applicant_id=applicant.id)

    @staticmethod
    def _converted_meanwhile(applicant_id):
        """Baca ulang setelah rollback: apakah pendaftar sudah punya siswa?"""
        applicant = db.session.get(Applicant, applicant_id)
        return applicant is not None and applicant.student_id is not None

    @staticmethod
    def _transition(applicant, target):
        if not applicant.state.can_transition_to(target):
            raise InvalidTransition(applicant.state, target)
        applicant.state = target
