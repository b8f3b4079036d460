from sekolah import create_app
from sekolah.extensions import db
from sekolah.models import User, UserRole, Applicant, Student, Tariff, Charge, Payment
from sekolah.services.billing_service import BillingService
import os

app = create_app()

# Shell context processor agar mudah testing di terminal
@app.shell_context_processor
def make_shell_context():
    return {
        'db': db, 'User': User, 'UserRole': UserRole, 'Applicant': Applicant, 'Student': Student,
        'Tariff': Tariff, 'Charge': Charge, 'Payment': Payment, 'BillingService': BillingService,
    }

if __name__ == '__main__':
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    app.run(host='0.0.0.0', port=8000, debug=debug_mode)
