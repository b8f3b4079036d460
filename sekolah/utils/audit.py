from flask import has_request_context, request

from sekolah.extensions import db
from sekolah.models import AuditLog


def record_audit(action, details, user=None):
    """Tambahkan baris audit ke session aktif; ikut commit/rollback bersama transaksi pemanggil."""
    ip_address = request.remote_addr if has_request_context() else None
    log = AuditLog(
        user_id=getattr(user, 'id', None),
        action=action,
        details=details,
        ip_address=ip_address,
    )
    db.session.add(log)
    return log
