from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict

from wtforms import (
    StringField,
    PasswordField,
    BooleanField,
    SelectField,
    DateField,
    DateTimeField,
    TextAreaField,
    IntegerField,
)

from wtforms.validators import (
    DataRequired,
    InputRequired,
    Optional,
    Email,
    Length,
    EqualTo,
    NumberRange,
    ValidationError as FieldError,
)

from sekolah.exceptions import ValidationError
from sekolah.models import Gender, DocumentStatus, RegistrationPaymentStatus, PAYMENT_METHODS


MONTHS = ['Januari', 'Februari', 'Maret', 'April', 'Mei', 'Juni', 'Juli',
          'Agustus', 'September', 'Oktober', 'November', 'Desember']

_BLANK = [('', '-')]


def _upper(value):
    return value.strip().upper() if isinstance(value, str) else value


class ApiForm(FlaskForm):
    """Form untuk endpoint JSON: CSRF dimatikan, data diambil dari body JSON atau form."""

    class Meta:
        csrf = False

    @classmethod
    def from_request(cls):
        payload = request.get_json(silent=True)
        if payload is None:
            formdata = request.form
        elif isinstance(payload, dict):
            formdata = MultiDict({k: v for k, v in payload.items() if v is not None})
        else:
            raise ValidationError('Body request harus berupa objek JSON')

        form = cls(formdata=formdata)
        form.sent_fields = set(formdata.keys())
        return form

    def validated_data(self):
        """Validasi form; kembalikan dict data, atau raise ValidationError dengan field pertama yang gagal."""
        if not self.validate():
            field, messages = next(iter(self.errors.items()))
            raise ValidationError(f'{field}: {messages[0]}', field=field)
        return {name: f.data for name, f in self._fields.items()}

    def submitted_data(self):
        """Seperti validated_data, tetapi hanya field yang benar-benar dikirim (untuk PATCH)."""
        data = self.validated_data()
        return {k: v for k, v in data.items() if k in self.sent_fields}


class LoginForm(ApiForm):
    # Bisa menerima input: email atau NIS
    login_id = StringField('Email / NIS', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])
    remember = BooleanField('Ingat Saya')


class ChangePasswordForm(ApiForm):
    old_password = PasswordField('Password Lama (Saat ini)', validators=[DataRequired()])
    new_password = PasswordField('Password Baru', validators=[
        DataRequired(),
        Length(min=6, message="Password minimal 6 karakter")
    ])
    confirm_password = PasswordField('Konfirmasi Password Baru', validators=[
        DataRequired(),
        EqualTo('new_password', message='Password tidak sama')
    ])


class ResetPasswordForm(ApiForm):
    new_password = PasswordField('Password Baru', validators=[
        DataRequired(),
        Length(min=6, message="Password minimal 6 karakter")
    ])


class ApplicantForm(ApiForm):
    """Formulir PPDB publik."""
    academic_year_id = IntegerField('Tahun Ajaran', validators=[DataRequired()])

    # === DATA DIRI ===
    full_name = StringField('Nama Lengkap', validators=[DataRequired(), Length(max=100)])
    email = StringField('Email', validators=[DataRequired(), Email(), Length(max=120)])
    phone = StringField('No. HP', validators=[Optional(), Length(max=20)])
    nisn = StringField('NISN', validators=[Optional(), Length(max=20)])
    gender = SelectField('Jenis Kelamin', choices=_BLANK + [(g.name, g.value) for g in Gender],
                         validators=[Optional()])
    place_of_birth = StringField('Tempat Lahir', validators=[Optional(), Length(max=50)])
    date_of_birth = DateField('Tanggal Lahir', format='%Y-%m-%d', validators=[Optional()])
    address = TextAreaField('Alamat Lengkap', validators=[Optional()])
    previous_school = StringField('Sekolah Asal', validators=[Optional(), Length(max=100)])

    # === DATA ORANG TUA / WALI ===
    father_name = StringField('Nama Ayah', validators=[Optional(), Length(max=100)])
    father_job = StringField('Pekerjaan Ayah', validators=[Optional()])
    father_phone = StringField('No. HP Ayah', validators=[Optional(), Length(max=20)])
    mother_name = StringField('Nama Ibu', validators=[Optional(), Length(max=100)])
    mother_job = StringField('Pekerjaan Ibu', validators=[Optional()])
    mother_phone = StringField('No. HP Ibu', validators=[Optional(), Length(max=20)])
    guardian_name = StringField('Nama Wali', validators=[Optional(), Length(max=100)])
    guardian_job = StringField('Pekerjaan Wali', validators=[Optional()])
    guardian_phone = StringField('No. HP Wali', validators=[Optional(), Length(max=20)])


class ApplicantReviewForm(ApplicantForm):
    """Edit oleh admin/TU: semua field opsional, plus status dokumen & pembayaran."""
    academic_year_id = IntegerField('Tahun Ajaran', validators=[Optional()])
    full_name = StringField('Nama Lengkap', validators=[Optional(), Length(max=100)])
    email = StringField('Email', validators=[Optional(), Email(), Length(max=120)])
    document_status = SelectField('Status Dokumen', choices=_BLANK + [(s.name, s.value) for s in DocumentStatus],
                                  validators=[Optional()])
    payment_status = SelectField('Status Pembayaran',
                                 choices=_BLANK + [(s.name, s.value) for s in RegistrationPaymentStatus],
                                 validators=[Optional()])


class AcceptApplicantForm(ApiForm):
    password = PasswordField('Password Awal', validators=[Optional(), Length(min=6)])


class RejectApplicantForm(ApiForm):
    reason = StringField('Alasan', validators=[Optional(), Length(max=255)])


class TariffForm(ApiForm):
    name = StringField('Nama Tagihan (Cth: SPP)', validators=[DataRequired(), Length(max=100)])
    amount = IntegerField('Nominal (Rp)', validators=[InputRequired(), NumberRange(min=1)])
    academic_year_id = IntegerField('Tahun Ajaran', validators=[DataRequired()])
    description = StringField('Keterangan', validators=[Optional(), Length(max=255)])


class ChargeForm(ApiForm):
    student_id = IntegerField('Siswa', validators=[DataRequired()])
    tariff_id = IntegerField('Tarif', validators=[DataRequired()])
    academic_year_id = IntegerField('Tahun Ajaran', validators=[Optional()])
    month = SelectField('Bulan', choices=_BLANK + [(m, m) for m in MONTHS], validators=[Optional()])
    due_date = DateField('Jatuh Tempo', format='%Y-%m-%d', validators=[Optional()])


class GenerateChargesForm(ApiForm):
    month = SelectField('Bulan', choices=_BLANK + [(m, m) for m in MONTHS], validators=[Optional()])
    due_date = DateField('Jatuh Tempo', format='%Y-%m-%d', validators=[Optional()])


# Form untuk TU menginput pembayaran
class PaymentForm(ApiForm):
    amount = IntegerField('Jumlah Pembayaran (Rp)', validators=[InputRequired()])
    method = SelectField('Metode Pembayaran', choices=list(PAYMENT_METHODS.items()), filters=[_upper],
                         validators=[DataRequired()])
    note = TextAreaField('Catatan (Opsional)', validators=[Optional()])
    date = DateTimeField('Tanggal', format=['%Y-%m-%dT%H:%M:%S', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d'],
                         validators=[Optional()])

    def validate_amount(self, field):
        # JSON 1.5 atau true tidak boleh diam-diam dibulatkan oleh IntegerField
        raw = field.raw_data[0] if field.raw_data else None
        if isinstance(raw, (bool, float)):
            raise FieldError('Jumlah bayar harus bilangan bulat')


class StudentForm(ApiForm):
    nis = StringField('NIS', validators=[Optional(), Length(max=20)])
    nisn = StringField('NISN', validators=[Optional(), Length(max=20)])
    full_name = StringField('Nama Lengkap Siswa', validators=[DataRequired(), Length(max=100)])
    gender = SelectField('Jenis Kelamin', choices=_BLANK + [(g.name, g.value) for g in Gender],
                         validators=[Optional()])
    class_id = IntegerField('Kelas', validators=[Optional()])
    place_of_birth = StringField('Tempat Lahir', validators=[Optional(), Length(max=50)])
    date_of_birth = DateField('Tanggal Lahir', format='%Y-%m-%d', validators=[Optional()])
    address = TextAreaField('Alamat Lengkap', validators=[Optional()])

    # Akun login (opsional)
    email = StringField('Email Siswa (untuk Login)', validators=[Optional(), Email()])
    password = PasswordField('Password Awal', validators=[Optional(), Length(min=6)])
