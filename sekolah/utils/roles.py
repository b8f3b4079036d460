from sekolah.models import UserRole


ROLE_LABELS = {
    UserRole.ADMIN: 'Admin',
    UserRole.GURU: 'Guru',
    UserRole.TU: 'Staf TU',
    UserRole.SISWA: 'Siswa',
}

# Role -> profil yang wajib terhubung ke akun
ROLE_OWNER = {
    UserRole.SISWA: 'student',
    UserRole.GURU: 'teacher',
    UserRole.ADMIN: None,
    UserRole.TU: None,
}


def parse_role(raw):
    if not raw:
        return None

    if isinstance(raw, UserRole):
        return raw

    if isinstance(raw, str):
        normalized = raw.strip()
        if not normalized:
            return None

        try:
            return UserRole[normalized.upper()]
        except KeyError:
            pass

        for role in UserRole:
            if normalized.lower() == role.value.lower():
                return role

    return None


def role_label(role):
    parsed = parse_role(role)
    if not parsed:
        return '-'
    return ROLE_LABELS.get(parsed, parsed.value.replace('_', ' ').title())
