from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from config import Config
from sekolah.exceptions import SekolahError, Unauthorized
from sekolah.extensions import db, migrate, login_manager, csrf


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # 1. Init Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    # 2. Import Models (Penting agar db.create_all mendeteksi tabel)
    from sekolah import models

    # 3. User Loader (Wajib untuk Flask-Login)
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(models.User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        raise Unauthorized('Silakan login terlebih dahulu')

    # 4. Error handler: semua error dijawab JSON {success: false, ...}
    @app.errorhandler(SekolahError)
    def handle_domain_error(error):
        app.logger.info("%s %s: %s", error.http_status, error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'success': False, 'code': error.name.upper().replace(' ', '_'),
                        'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        app.logger.exception("Unhandled error: %s", error)
        return jsonify({'success': False, 'code': 'INTERNAL_ERROR',
                        'message': 'Terjadi kesalahan pada server'}), 500

    # 5. Registrasi Blueprint (API JSON, tanpa CSRF token)
    from sekolah.routes.auth import auth_bp
    from sekolah.routes.pendaftaran import pendaftaran_bp
    from sekolah.routes.keuangan import keuangan_bp
    from sekolah.routes.siswa import siswa_bp

    for blueprint in (auth_bp, pendaftaran_bp, keuangan_bp, siswa_bp):
        csrf.exempt(blueprint)

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(pendaftaran_bp, url_prefix='/pendaftaran')
    app.register_blueprint(keuangan_bp, url_prefix='/keuangan')
    app.register_blueprint(siswa_bp, url_prefix='/siswa')

    return app
