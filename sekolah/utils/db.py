from sekolah.exceptions import ConflictError

# Potongan nama constraint/kolom -> (field, pesan)
# Urutan penting: 'students.nisn' harus dicek sebelum 'students.nis'
_CONFLICT_MESSAGES = [
    ('students.nisn', 'nisn', 'NISN sudah dipakai siswa lain'),
    ('students_nisn', 'nisn', 'NISN sudah dipakai siswa lain'),
    ('students.nis', 'nis', 'NIS sudah dipakai siswa lain'),
    ('students_nis', 'nis', 'NIS sudah dipakai siswa lain'),
    ('users.email', 'email', 'Email sudah terdaftar sebagai akun'),
    ('users_email', 'email', 'Email sudah terdaftar sebagai akun'),
    ('users.student_id', 'student_id', 'Siswa ini sudah memiliki akun'),
    ('users_student_id', 'student_id', 'Siswa ini sudah memiliki akun'),
    ('applicants.email', 'email', 'Email sudah dipakai pendaftar lain'),
    ('applicants_email', 'email', 'Email sudah dipakai pendaftar lain'),
    ('applicants.student_id', 'student_id', 'Pendaftaran sudah diproses sebelumnya'),
    ('applicants_student_id', 'student_id', 'Pendaftaran sudah diproses sebelumnya'),
    ('uq_tariff_name_year', 'name', 'Tarif dengan nama ini sudah ada di tahun ajaran tersebut'),
    ('tariffs.name', 'name', 'Tarif dengan nama ini sudah ada di tahun ajaran tersebut'),
    ('uq_charge_period', 'tariff_id', 'Tagihan untuk periode ini sudah ada'),
    ('charges.student_id', 'tariff_id', 'Tagihan untuk periode ini sudah ada'),
    ('charges.invoice_number', 'invoice_number', 'Nomor invoice sudah dipakai'),
    ('charges_invoice_number', 'invoice_number', 'Nomor invoice sudah dipakai'),
]


def conflict_field(exc):
    """Nama field yang melanggar unique constraint, jika dikenali."""
    text = str(getattr(exc, 'orig', exc))
    for fragment, field, _ in _CONFLICT_MESSAGES:
        if fragment in text:
            return field
    return None


def conflict_from_integrity(exc):
    """Terjemahkan IntegrityError SQLAlchemy menjadi ConflictError tanpa membocorkan detail database."""
    text = str(getattr(exc, 'orig', exc))
    for fragment, field, message in _CONFLICT_MESSAGES:
        if fragment in text:
            return ConflictError(message, field=field)
    return ConflictError('Data bentrok dengan data yang sudah ada')
