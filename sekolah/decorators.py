from functools import wraps

from flask_login import current_user

from sekolah.exceptions import Forbidden, Unauthorized
from sekolah.models import UserRole


def role_required(*roles):
    """
    Decorator untuk membatasi akses berdasarkan Role.
    Penggunaan: @role_required(UserRole.ADMIN, UserRole.TU)
    """
    def wrapper(fn):
        @wraps(fn)
        def decorated_view(*args, **kwargs):
            if not current_user.is_authenticated:
                raise Unauthorized('Silakan login terlebih dahulu')
            if not current_user.has_role(*roles):
                raise Forbidden('Anda tidak memiliki akses ke fitur ini')
            return fn(*args, **kwargs)
        return decorated_view
    return wrapper


def admin_required(fn):
    return role_required(UserRole.ADMIN)(fn)


def staff_required(fn):
    """Admin atau Tata Usaha."""
    return role_required(UserRole.ADMIN, UserRole.TU)(fn)
