from flask import Blueprint, request
from flask_login import login_user, logout_user, current_user, login_required

from sekolah.exceptions import Forbidden, Unauthorized
from sekolah.forms import LoginForm, ChangePasswordForm
from sekolah.services.account_service import AccountService
from sekolah.utils.responses import success
from sekolah.utils.roles import role_label


auth_bp = Blueprint('auth', __name__)


# --- THE BOUNCER (SATPAM) ---
@auth_bp.before_app_request
def check_force_password_change():
    """
    Cek setiap request:
    Jika user login DAN statusnya 'must_change_password' == True,
    tolak semua endpoint selain ganti password / logout / cek profil.
    """
    if current_user.is_authenticated and current_user.must_change_password:
        allowed_endpoints = ['auth.change_password', 'auth.logout', 'auth.me', 'static']

        if request.endpoint not in allowed_endpoints:
            raise Forbidden(
                'Demi keamanan, Anda wajib mengganti password default sebelum melanjutkan.',
                action='change_password',
            )


def _user_payload(user):
    payload = user.to_dict()
    payload['role_label'] = role_label(user.role)
    return payload


# --- ROUTE LOGIN ----
@auth_bp.route('/login', methods=['POST'])
def login():
    data = LoginForm.from_request().validated_data()

    user = AccountService.authenticate(data['login_id'], data['password'])
    if not user:
        raise Unauthorized('Login gagal. Cek kembali Email/NIS dan password.')

    login_user(user, remember=bool(data.get('remember')))
    return success(_user_payload(user), message='Login berhasil')


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return success(_user_payload(current_user))


# --- ROUTE GANTI PASSWORD ---
@auth_bp.route('/password', methods=['POST'])
@login_required
def change_password():
    data = ChangePasswordForm.from_request().validated_data()
    AccountService.change_password(current_user, data['old_password'], data['new_password'])
    return success(message='Password berhasil diperbarui!')


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return success(message='Logout berhasil')
