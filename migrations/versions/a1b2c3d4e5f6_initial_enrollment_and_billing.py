"""initial enrollment and billing schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'userrole': ('ADMIN', 'GURU', 'SISWA', 'TU'),
    'gender': ('L', 'P'),
    'applicantstate': ('SUBMITTED', 'UNDER_REVIEW', 'ACCEPTED', 'REJECTED'),
    'documentstatus': ('PENDING', 'COMPLETE', 'INCOMPLETE'),
    'registrationpaymentstatus': ('UNPAID', 'PAID'),
    'chargestatus': ('UNPAID', 'PARTIAL', 'PAID'),
}


def _enum(name):
    # create_type=False: tipe dibuat sekali di upgrade(), dipakai ulang oleh beberapa tabel
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        'academic_years',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=20), nullable=False),
        sa.Column('semester', sa.String(length=10), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'teachers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('nip', sa.String(length=20), nullable=True),
        sa.Column('full_name', sa.String(length=100), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('nip')
    )

    op.create_table(
        'class_rooms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=20), nullable=False),
        sa.Column('grade_level', sa.Integer(), nullable=True),
        sa.Column('homeroom_teacher_id', sa.Integer(), nullable=True),
        sa.Column('academic_year_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id']),
        sa.ForeignKeyConstraint(['homeroom_teacher_id'], ['teachers.id']),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'students',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('current_class_id', sa.Integer(), nullable=True),
        sa.Column('nis', sa.String(length=20), nullable=False),
        sa.Column('nisn', sa.String(length=20), nullable=True),
        sa.Column('full_name', sa.String(length=100), nullable=False),
        sa.Column('gender', _enum('gender'), nullable=True),
        sa.Column('place_of_birth', sa.String(length=50), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('photo_url', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['current_class_id'], ['class_rooms.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('nis'),
        sa.UniqueConstraint('nisn')
    )

    op.create_table(
        'guardians',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(length=100), nullable=False),
        sa.Column('relationship', sa.String(length=20), nullable=True),
        sa.Column('job', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('role', _enum('userrole'), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=True),
        sa.Column('teacher_id', sa.Integer(), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('must_change_password', sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(role = 'SISWA' AND student_id IS NOT NULL AND teacher_id IS NULL) OR "
            "(role = 'GURU' AND teacher_id IS NOT NULL AND student_id IS NULL) OR "
            "(role IN ('ADMIN', 'TU') AND student_id IS NULL AND teacher_id IS NULL)",
            name='ck_users_role_owner'
        ),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('student_id'),
        sa.UniqueConstraint('teacher_id')
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=50), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'applicants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('registration_no', sa.String(length=20), nullable=True),
        sa.Column('academic_year_id', sa.Integer(), nullable=False),
        sa.Column('state', _enum('applicantstate'), nullable=False),
        sa.Column('document_status', _enum('documentstatus'), nullable=False),
        sa.Column('payment_status', _enum('registrationpaymentstatus'), nullable=False),
        sa.Column('rejection_reason', sa.String(length=255), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('student_id', sa.Integer(), nullable=True),
        sa.Column('full_name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('nisn', sa.String(length=20), nullable=True),
        sa.Column('gender', _enum('gender'), nullable=True),
        sa.Column('place_of_birth', sa.String(length=50), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('previous_school', sa.String(length=100), nullable=True),
        sa.Column('father_name', sa.String(length=100), nullable=True),
        sa.Column('father_job', sa.String(length=100), nullable=True),
        sa.Column('father_phone', sa.String(length=20), nullable=True),
        sa.Column('mother_name', sa.String(length=100), nullable=True),
        sa.Column('mother_job', sa.String(length=100), nullable=True),
        sa.Column('mother_phone', sa.String(length=20), nullable=True),
        sa.Column('guardian_name', sa.String(length=100), nullable=True),
        sa.Column('guardian_job', sa.String(length=100), nullable=True),
        sa.Column('guardian_phone', sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('registration_no'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('student_id')
    )

    op.create_table(
        'tariffs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('academic_year_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_tariffs_amount_positive'),
        sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', 'academic_year_id', name='uq_tariff_name_year')
    )

    op.create_table(
        'charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=60), nullable=True),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('tariff_id', sa.Integer(), nullable=False),
        sa.Column('academic_year_id', sa.Integer(), nullable=False),
        sa.Column('month', sa.String(length=20), nullable=True),
        sa.Column('status', _enum('chargestatus'), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['academic_year_id'], ['academic_years.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.ForeignKeyConstraint(['tariff_id'], ['tariffs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number'),
        sa.UniqueConstraint('student_id', 'tariff_id', 'academic_year_id', 'month', name='uq_charge_period')
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('charge_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=30), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('date', sa.DateTime(), nullable=True),
        sa.Column('recorded_by_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_payments_amount_positive'),
        sa.ForeignKeyConstraint(['charge_id'], ['charges.id']),
        sa.ForeignKeyConstraint(['recorded_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_charges_student_tariff', 'charges', ['student_id', 'tariff_id'])


def downgrade():
    op.drop_index('ix_charges_student_tariff', table_name='charges')
    for table in ('payments', 'charges', 'tariffs', 'applicants', 'audit_logs', 'users',
                  'guardians', 'students', 'class_rooms', 'teachers', 'academic_years'):
        op.drop_table(table)

    bind = op.get_bind()
    for name in ENUMS:
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
