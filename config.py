import os
from dotenv import load_dotenv

# Muat variabel dari file .env (untuk di laptop)
load_dotenv()


class Config:
    # 1. SECRET KEY
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'kunci-rahasia-default-jika-lupa'

    # 2. DATABASE CONFIGURATION
    db_uri = os.environ.get('DATABASE_URL')

    # Render sering memberikan URL 'postgres://', tapi SQLAlchemy butuh 'postgresql://'
    if db_uri and db_uri.startswith("postgres://"):
        db_uri = db_uri.replace("postgres://", "postgresql://", 1)

    # Jika db_uri kosong (misal di laptop belum setting), otomatis pakai SQLite
    SQLALCHEMY_DATABASE_URI = db_uri or 'sqlite:///sekolah_lokal.db'

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # 3. LOGGING
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # 4. AKUN
    # Password awal untuk akun siswa hasil penerimaan PPDB (wajib diganti saat login pertama)
    DEFAULT_STUDENT_PASSWORD = os.environ.get('DEFAULT_STUDENT_PASSWORD') or 'password123'
    PASSWORD_HASH_METHOD = os.environ.get('PASSWORD_HASH_METHOD') or 'pbkdf2:sha256:600000'

    # 5. KEUANGAN
    # False = pembayaran yang melebihi sisa tagihan ditolak
    BILLING_ALLOW_OVERPAYMENT = os.environ.get('BILLING_ALLOW_OVERPAYMENT', 'False').lower() == 'true'
    CHARGE_DUE_DAYS = int(os.environ.get('CHARGE_DUE_DAYS', 14))


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = 'DEBUG'
    # Hash cepat khusus test, jangan dipakai di produksi
    PASSWORD_HASH_METHOD = 'pbkdf2:sha256:1000'
    BILLING_ALLOW_OVERPAYMENT = False
