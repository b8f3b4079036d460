"""
Typed exceptions for the enrollment and billing services.

Every error carries a machine-readable ``code`` and the HTTP status the
API layer should answer with, so routes catch by type instead of parsing
messages:

    SekolahError
    +-- ValidationError
    |   +-- InvalidAmount
    |   +-- OverpaymentError
    +-- NotFound
    +-- ConflictError
    |   +-- DuplicateEmail
    +-- AlreadyProcessed
    +-- InvalidTransition
    +-- ImmutableRecordError
    +-- Unauthorized
    +-- Forbidden
"""


class SekolahError(Exception):
    code = 'ERROR'
    http_status = 500

    def __init__(self, message=None, **details):
        self.message = message or self.__class__.__name__
        self.details = details
        self.field = details.get('field')
        super().__init__(self.message)

    def to_dict(self):
        payload = {'success': False, 'code': self.code, 'message': self.message}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(SekolahError):
    code = 'VALIDATION_ERROR'
    http_status = 400

    def __init__(self, message=None, field=None, **details):
        super().__init__(message, field=field, **details)
        self.field = field


class InvalidAmount(ValidationError):
    code = 'INVALID_AMOUNT'

    def __init__(self, amount, message=None):
        super().__init__(message or f'Jumlah bayar tidak valid: {amount!r}', field='amount')
        self.amount = amount


class OverpaymentError(ValidationError):
    code = 'OVERPAYMENT'

    def __init__(self, amount, remaining):
        super().__init__(
            f'Pembayaran {amount} melebihi sisa tagihan (Maks: {remaining})',
            field='amount',
            remaining=remaining,
        )
        self.amount = amount
        self.remaining = remaining


class NotFound(SekolahError):
    code = 'NOT_FOUND'
    http_status = 404

    def __init__(self, entity, key=None, message=None):
        super().__init__(message or f'{entity} tidak ditemukan', entity=entity)
        self.entity = entity
        self.key = key


class ConflictError(SekolahError):
    code = 'CONFLICT'
    http_status = 409


class DuplicateEmail(ConflictError):
    code = 'DUPLICATE_EMAIL'

    def __init__(self, email):
        super().__init__(f'Email {email} sudah terdaftar', field='email')
        self.email = email


class AlreadyProcessed(SekolahError):
    code = 'ALREADY_PROCESSED'
    http_status = 409

    def __init__(self, message=None, applicant_id=None):
        super().__init__(message or 'Pendaftaran sudah diproses sebelumnya', applicant_id=applicant_id)
        self.applicant_id = applicant_id


class InvalidTransition(SekolahError):
    code = 'INVALID_TRANSITION'
    http_status = 409

    def __init__(self, current, target):
        super().__init__(
            f'Perubahan status {current.name} -> {target.name} tidak diizinkan',
            current=current.name,
            target=target.name,
        )
        self.current = current
        self.target = target


class ImmutableRecordError(SekolahError):
    code = 'IMMUTABLE_RECORD'
    http_status = 409


class Unauthorized(SekolahError):
    code = 'UNAUTHORIZED'
    http_status = 401


class Forbidden(SekolahError):
    code = 'FORBIDDEN'
    http_status = 403
