"""API blueprints mounted by the app factory."""

from routes.auth import auth_bp
from routes.feasibility import feasibility_bp
from routes.upload import upload_bp


def register_blueprints(app):
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(feasibility_bp, url_prefix='/api/feasibility')
    app.register_blueprint(upload_bp, url_prefix='/api/upload')
