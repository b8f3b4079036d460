# sekolah/services/account_service.py
from flask import current_app
from sqlalchemy.exc import IntegrityError

from sekolah.exceptions import DuplicateEmail, NotFound, ValidationError
from sekolah.extensions import db
from sekolah.models import User, Student, utcnow
from sekolah.utils.db import conflict_field, conflict_from_integrity
from sekolah.utils.roles import ROLE_OWNER, parse_role


class AccountService:
    @staticmethod
    def _hash_method():
        return current_app.config.get('PASSWORD_HASH_METHOD')

    @staticmethod
    def provision(email, password, role, student=None, teacher=None, commit=True):
        """
        Buat akun login baru yang terikat ke profil sesuai role.
        SISWA -> student, GURU -> teacher, ADMIN/TU -> tanpa profil.

        commit=False dipakai ketika pemanggil memegang transaksi sendiri (misal penerimaan PPDB);
        akun hanya di-flush agar id-nya tersedia.
        """
        email = (email or '').strip()
        if not email:
            raise ValidationError('Email akun wajib diisi', field='email')
        if not password:
            raise ValidationError('Password akun wajib diisi', field='password')

        parsed_role = parse_role(role)
        if parsed_role is None:
            raise ValidationError(f'Role tidak dikenal: {role!r}', field='role')

        owner = ROLE_OWNER[parsed_role]
        if owner == 'student' and (student is None or teacher is not None):
            raise ValidationError('Akun siswa harus terhubung ke tepat satu data siswa', field='role')
        if owner == 'teacher' and (teacher is None or student is not None):
            raise ValidationError('Akun guru harus terhubung ke tepat satu data guru', field='role')
        if owner is None and (student is not None or teacher is not None):
            raise ValidationError(f'Akun {parsed_role.name} tidak boleh terhubung ke profil', field='role')

        if User.query.filter_by(email=email).first():
            raise DuplicateEmail(email)

        user = User(
            email=email,
            role=parsed_role,
            student=student,
            teacher=teacher,
            must_change_password=True,
        )
        user.set_password(password, method=AccountService._hash_method())
        db.session.add(user)

        try:
            if commit:
                db.session.commit()
            else:
                db.session.flush()
        except IntegrityError as e:
            if commit:
                db.session.rollback()
            if conflict_field(e) == 'email':
                raise DuplicateEmail(email) from e
            raise conflict_from_integrity(e) from e

        current_app.logger.info("Akun %s (%s) dibuat", email, parsed_role.name)
        return user

    @staticmethod
    def reset_password(account_id, new_password):
        """Timpa password tanpa verifikasi password lama (verifikasi tanggung jawab pemanggil)."""
        user = db.session.get(User, account_id)
        if not user:
            raise NotFound('Akun', account_id)
        if not new_password:
            raise ValidationError('Password baru wajib diisi', field='new_password')

        user.set_password(new_password, method=AccountService._hash_method())
        user.must_change_password = True
        db.session.commit()

        current_app.logger.info("Password akun #%s direset", user.id)
        return user

    @staticmethod
    def change_password(user, old_password, new_password):
        if not user.check_password(old_password):
            raise ValidationError('Password lama salah!', field='old_password')

        user.set_password(new_password, method=AccountService._hash_method())
        user.must_change_password = False
        db.session.commit()
        return user

    @staticmethod
    def authenticate(login_id, password):
        """Cari akun lewat email atau NIS siswa, lalu cek password. None jika gagal."""
        identifier = (login_id or '').strip()
        if not identifier:
            return None

        user = User.query.filter_by(email=identifier).first()
        if not user:
            user = User.query.join(Student, User.student_id == Student.id).filter(Student.nis == identifier).first()

        if not user or not user.check_password(password):
            return None

        user.last_login = utcnow()
        db.session.commit()
        return user
