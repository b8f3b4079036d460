from flask import Blueprint

from sekolah.decorators import admin_required, staff_required
from sekolah.forms import StudentForm, ResetPasswordForm
from sekolah.services.account_service import AccountService
from sekolah.services.student_service import StudentService
from sekolah.utils.responses import success


siswa_bp = Blueprint('siswa', __name__)


@siswa_bp.route('', methods=['POST'])
@staff_required
def create_student():
    data = StudentForm.from_request().validated_data()
    student = StudentService.create_student(data, email=data.get('email'), password=data.get('password'))

    payload = student.to_dict()
    payload['account'] = student.account.to_dict() if student.account else None
    return success(payload, message=f'Siswa {student.full_name} berhasil ditambahkan', status=201)


@siswa_bp.route('/akun/<int:account_id>/reset-password', methods=['POST'])
@admin_required
def reset_password(account_id):
    data = ResetPasswordForm.from_request().validated_data()
    user = AccountService.reset_password(account_id, data['new_password'])
    return success(user.to_dict(), message='Password berhasil direset')
