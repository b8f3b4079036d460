# sekolah/services/student_service.py
from flask import current_app
from sqlalchemy.exc import IntegrityError

from sekolah.exceptions import ConflictError, NotFound, SekolahError, ValidationError
from sekolah.extensions import db
from sekolah.models import Student, Guardian, ClassRoom, Gender, UserRole
from sekolah.services.account_service import AccountService
from sekolah.utils.db import conflict_from_integrity
from sekolah.utils.nis import generate_nis
from sekolah.utils.parsing import coerce_enum, parse_date

STUDENT_FIELDS = ('nisn', 'gender', 'place_of_birth', 'date_of_birth', 'address', 'photo_url')


class StudentService:
    @staticmethod
    def new_student(full_name, nis=None, guardians=None, **fields):
        """
        Tambahkan Student (dan wali) ke session yang sedang berjalan, lalu flush.
        Tidak commit: dipakai oleh tambah-siswa manual maupun penerimaan PPDB.
        """
        nis = nis or generate_nis()
        if Student.query.filter_by(nis=nis).first():
            raise ConflictError(f'NIS {nis} sudah dipakai siswa lain', field='nis')

        student = Student(nis=nis, full_name=full_name,
                          **{k: v for k, v in fields.items() if k in STUDENT_FIELDS or k == 'current_class_id'})
        db.session.add(student)

        for guardian in guardians or []:
            db.session.add(Guardian(student=student, **guardian))

        db.session.flush()
        return student

    @staticmethod
    def create_student(data, email=None, password=None):
        """Tambah siswa langsung oleh admin, opsional sekaligus membuat akun login."""
        class_id = data.get('class_id')
        if class_id and not db.session.get(ClassRoom, class_id):
            raise NotFound('Kelas', class_id)

        full_name = (data.get('full_name') or '').strip()
        if not full_name:
            raise ValidationError('Nama lengkap wajib diisi', field='full_name')

        fields = {k: data.get(k) for k in STUDENT_FIELDS if data.get(k) not in (None, '')}
        if 'gender' in fields:
            fields['gender'] = coerce_enum(Gender, fields['gender'], 'gender')
        if 'date_of_birth' in fields:
            fields['date_of_birth'] = parse_date(fields['date_of_birth'], 'date_of_birth')

        try:
            student = StudentService.new_student(
                full_name=full_name,
                nis=data.get('nis') or None,
                current_class_id=class_id or None,
                **fields,
            )

            if email:
                AccountService.provision(
                    email,
                    password or current_app.config['DEFAULT_STUDENT_PASSWORD'],
                    UserRole.SISWA,
                    student=student,
                    commit=False,
                )

            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise conflict_from_integrity(e) from e
        except SekolahError:
            db.session.rollback()
            raise

        current_app.logger.info("Siswa %s (NIS %s) ditambahkan", student.full_name, student.nis)
        return student
