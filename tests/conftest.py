"""
Pytest fixtures for the enrollment and billing test suite.

Provides:
- ``app``: application on a fresh in-memory SQLite database (no context pushed)
- ``ctx``: the same app with an application context pushed, for service-level tests
- factories for academic years, applicants, students, tariffs and accounts
- ``seeded`` / ``login`` for HTTP tests through the Flask test client

HTTP tests never hold an application context across requests: each request
gets its own context, so Flask-Login's per-context user cache cannot leak
between clients.
"""

from types import SimpleNamespace

import pytest

from config import TestingConfig
from sekolah import create_app
from sekolah.extensions import db
from sekolah.models import AcademicYear, ClassRoom, Teacher, User, UserRole
from sekolah.services.account_service import AccountService
from sekolah.services.admission_service import AdmissionService
from sekolah.services.billing_service import BillingService
from sekolah.services.student_service import StudentService


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


# =========================================================
# FACTORIES (butuh ctx)
# =========================================================
@pytest.fixture
def year(ctx):
    academic_year = AcademicYear(name='2025/2026', semester='Ganjil', is_active=True)
    db.session.add(academic_year)
    db.session.commit()
    return academic_year


@pytest.fixture
def applicant_data(year):
    def _build(**overrides):
        data = {
            'academic_year_id': year.id,
            'full_name': 'Budi Santoso',
            'email': 'a@x.com',
            'phone': '081234567890',
            'gender': 'L',
            'place_of_birth': 'Bandung',
            'date_of_birth': '2012-05-17',
            'father_name': 'Santoso',
            'mother_name': 'Siti Aminah',
        }
        data.update(overrides)
        return data
    return _build


@pytest.fixture
def make_applicant(applicant_data):
    def _make(**overrides):
        return AdmissionService.submit(applicant_data(**overrides))
    return _make


@pytest.fixture
def make_student(ctx):
    counter = {'n': 0}

    def _make(**overrides):
        counter['n'] += 1
        data = {'full_name': f"Siswa {counter['n']}", 'gender': 'P'}
        data.update(overrides)
        return StudentService.create_student(data)
    return _make


@pytest.fixture
def make_tariff(year):
    def _make(name='SPP', amount=500000):
        return BillingService.create_tariff(name, amount, year.id)
    return _make


@pytest.fixture
def admin(ctx):
    return AccountService.provision('admin@sekolah.id', 'admin123', UserRole.ADMIN)


# =========================================================
# HTTP
# =========================================================
@pytest.fixture
def seeded(app):
    """Data dasar untuk test HTTP. Hanya id & kredensial yang dikembalikan (objek ORM sudah detached)."""
    with app.app_context():
        academic_year = AcademicYear(name='2025/2026', semester='Ganjil', is_active=True)
        homeroom = Teacher(nip='19900101', full_name='Cecep Supriatna')
        other_teacher = Teacher(nip='19900202', full_name='Dewi Lestari')
        db.session.add_all([academic_year, homeroom, other_teacher])
        db.session.flush()

        class_room = ClassRoom(name='VII-A', grade_level=7, academic_year_id=academic_year.id,
                               homeroom_teacher_id=homeroom.id)
        db.session.add(class_room)
        db.session.commit()

        AccountService.provision('admin@sekolah.id', 'admin123', UserRole.ADMIN)
        AccountService.provision('tu@sekolah.id', 'tu12345', UserRole.TU)
        AccountService.provision('wali@sekolah.id', 'guru123', UserRole.GURU, teacher=homeroom)
        AccountService.provision('guru@sekolah.id', 'guru123', UserRole.GURU, teacher=other_teacher)
        User.query.update({'must_change_password': False})
        db.session.commit()

        student = StudentService.create_student(
            {'full_name': 'Rina Marlina', 'gender': 'P', 'class_id': class_room.id},
            email='rina@sekolah.id',
            password='rina123',
        )
        student.account.must_change_password = False
        db.session.commit()

        tariff = BillingService.create_tariff('SPP', 500000, academic_year.id)
        charge = BillingService.create_charge(student.id, tariff.id, month='Juli')

        return SimpleNamespace(
            year_id=academic_year.id,
            class_id=class_room.id,
            student_id=student.id,
            student_nis=student.nis,
            student_account_id=student.account.id,
            tariff_id=tariff.id,
            charge_id=charge.id,
        )


@pytest.fixture
def login():
    def _login(client, login_id, password):
        response = client.post('/auth/login', json={'login_id': login_id, 'password': password})
        assert response.status_code == 200, response.get_json()
        return response
    return _login
