from flask import Blueprint, request
from flask_login import current_user

from sekolah.decorators import staff_required
from sekolah.exceptions import ValidationError
from sekolah.forms import ApplicantForm, ApplicantReviewForm, AcceptApplicantForm, RejectApplicantForm
from sekolah.services.admission_service import AdmissionService
from sekolah.utils.responses import success
from sekolah.utils.uploads import iter_upload_rows


pendaftaran_bp = Blueprint('pendaftaran', __name__)


# =========================================================
# PUBLIK
# =========================================================
@pendaftaran_bp.route('', methods=['POST'])
def submit():
    data = ApplicantForm.from_request().validated_data()
    applicant = AdmissionService.submit(data)
    return success(
        {'id': applicant.id, 'registration_no': applicant.registration_no, 'state': applicant.state.name},
        message='Pendaftaran berhasil dikirim',
        status=201,
    )


@pendaftaran_bp.route('/status', methods=['GET'])
def status():
    applicant = AdmissionService.lookup_status(request.args.get('email'))
    return success({
        'registration_no': applicant.registration_no,
        'full_name': applicant.full_name,
        'email': applicant.email,
        'academic_year': applicant.academic_year.name if applicant.academic_year else None,
        'state': applicant.state.name,
        'state_label': applicant.state.value,
        'document_status': applicant.document_status.name,
        'payment_status': applicant.payment_status.name,
        'rejection_reason': applicant.rejection_reason,
    })


# =========================================================
# ADMIN / TU
# =========================================================
@pendaftaran_bp.route('/admin', methods=['GET'])
@staff_required
def list_applicants():
    applicants = AdmissionService.list_applicants(
        state=request.args.get('state') or None,
        academic_year_id=request.args.get('academic_year_id', type=int),
    )
    return success([a.to_dict() for a in applicants], total=len(applicants))


@pendaftaran_bp.route('/admin/stats', methods=['GET'])
@staff_required
def stats():
    return success(AdmissionService.stats(academic_year_id=request.args.get('academic_year_id', type=int)))


@pendaftaran_bp.route('/admin/<int:applicant_id>', methods=['GET'])
@staff_required
def detail(applicant_id):
    return success(AdmissionService.get_applicant(applicant_id).to_dict())


@pendaftaran_bp.route('/admin/<int:applicant_id>', methods=['PATCH'])
@staff_required
def review(applicant_id):
    patch = ApplicantReviewForm.from_request().submitted_data()
    applicant = AdmissionService.review(applicant_id, patch, actor=current_user)
    return success(applicant.to_dict(), message='Data pendaftar diperbarui')


@pendaftaran_bp.route('/admin/<int:applicant_id>/terima', methods=['POST'])
@staff_required
def accept(applicant_id):
    data = AcceptApplicantForm.from_request().validated_data()
    student = AdmissionService.accept(applicant_id, password=data.get('password'), actor=current_user)
    return success(
        {'student': student.to_dict(), 'account': student.account.to_dict()},
        message=f'Pendaftar diterima sebagai siswa dengan NIS {student.nis}',
    )


@pendaftaran_bp.route('/admin/<int:applicant_id>/tolak', methods=['POST'])
@staff_required
def reject(applicant_id):
    data = RejectApplicantForm.from_request().validated_data()
    applicant = AdmissionService.reject(applicant_id, reason=data.get('reason'), actor=current_user)
    return success(applicant.to_dict(), message='Pendaftar ditolak')


@pendaftaran_bp.route('/admin/upload', methods=['POST'])
@staff_required
def upload():
    file = request.files.get('file')
    if not file or not file.filename:
        raise ValidationError('File upload wajib diisi (.csv atau .xlsx)', field='file')

    academic_year_id = request.form.get('academic_year_id', type=int)
    result = AdmissionService.import_rows(iter_upload_rows(file), academic_year_id)
    return success(
        {
            'created': [a.to_dict() for a in result['created']],
            'errors': result['errors'],
        },
        message=f"{len(result['created'])} pendaftar berhasil diimport, {len(result['errors'])} gagal",
    )
