from sekolah.models import UserRole


def is_homeroom_or_admin(user, class_room):
    """
    True jika user adalah Admin/TU, atau guru yang menjadi wali kelas `class_room`.
    Dipakai sebagai predikat `authorize` yang dioper ke service.
    """
    if user is None or not getattr(user, 'is_authenticated', False):
        return False

    if user.role in (UserRole.ADMIN, UserRole.TU):
        return True

    if user.role != UserRole.GURU or class_room is None:
        return False

    return user.teacher_id is not None and class_room.homeroom_teacher_id == user.teacher_id
