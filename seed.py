from datetime import date

from sekolah import create_app
from sekolah.extensions import db
from sekolah.models import (
    User, UserRole, Teacher, ClassRoom, AcademicYear, Gender,
)
from sekolah.services.account_service import AccountService
from sekolah.services.admission_service import AdmissionService
from sekolah.services.billing_service import BillingService

app = create_app()

with app.app_context():
    print("🧹 Menghapus database lama...")
    db.drop_all()

    print("🏗️ Membuat tabel database baru...")
    db.create_all()

    # ============================================
    # 1. MASTER DATA (ACADEMIC YEAR)
    # ============================================
    print("⚙️  Creating Master Data...")

    # Tahun Ajaran (PENTING: Harus ada sebelum buat Kelas/Tarif/Pendaftaran)
    ta_now = AcademicYear(name='2025/2026', semester='Ganjil', is_active=True)
    db.session.add(ta_now)
    db.session.commit()  # Commit dulu biar dpt ID untuk relasi

    # ============================================
    # 2. USERS (ADMIN, GURU, TU)
    # ============================================
    print("👤 Creating Users (Admin, Guru, TU)...")

    AccountService.provision('admin@sekolah.id', 'admin123', UserRole.ADMIN)
    AccountService.provision('tu@sekolah.id', 'tu123', UserRole.TU)

    guru_profile = Teacher(nip="19900101", full_name="Cecep Supriatna", phone="081200000001")
    db.session.add(guru_profile)
    db.session.flush()
    AccountService.provision('teacher@sekolah.id', 'guru123', UserRole.GURU, teacher=guru_profile)

    # Akun seed tidak perlu ganti password
    User.query.filter(User.role != UserRole.SISWA).update({'must_change_password': False})
    db.session.commit()

    # ============================================
    # 3. KELAS
    # ============================================
    print("📚 Creating Classes...")
    cls7a = ClassRoom(name="VII-A", grade_level=7, academic_year_id=ta_now.id,
                      homeroom_teacher_id=guru_profile.id)
    cls7b = ClassRoom(name="VII-B", grade_level=7, academic_year_id=ta_now.id)
    db.session.add_all([cls7a, cls7b])
    db.session.commit()

    # ============================================
    # 4. PPDB: PENDAFTAR -> SISWA
    # ============================================
    print("📝 Creating Applicants...")

    shafiya = AdmissionService.submit({
        'academic_year_id': ta_now.id,
        'full_name': 'Shafiya Zakiya',
        'email': 'shafiya@mail.com',
        'gender': Gender.P,
        'place_of_birth': 'Cirebon',
        'date_of_birth': date(2012, 8, 8),
        'father_name': 'Aji Abdul Aziz',
        'father_phone': '081916071882',
    })
    AdmissionService.submit({
        'academic_year_id': ta_now.id,
        'full_name': 'Arsyad Maulana',
        'email': 'arsyad@mail.com',
        'gender': 'L',
    })

    student = AdmissionService.accept(shafiya.id)
    student.current_class_id = cls7a.id
    db.session.commit()

    # ============================================
    # 5. KEUANGAN (TARIF & TAGIHAN)
    # ============================================
    print("💰 Creating Tariffs & Charges...")

    spp = BillingService.create_tariff("SPP Bulanan", 500000, ta_now.id, description="SPP per bulan")
    gedung = BillingService.create_tariff("Uang Gedung", 2000000, ta_now.id)

    for bulan in ("Juli", "Agustus", "September"):
        BillingService.generate_charges(spp.id, month=bulan)
    BillingService.generate_charges(gedung.id)

    print("\n✅ Database Seeded Successfully!")
    print("   - Admin: admin@sekolah.id / admin123")
    print("   - TU: tu@sekolah.id / tu123")
    print("   - Guru (wali kelas VII-A): teacher@sekolah.id / guru123")
    print(f"   - Siswa: {student.nis} / password123 (Must Change)")
