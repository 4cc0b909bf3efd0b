"""
WSGI entry point for long-running servers (gunicorn, local development).

The deployment mode comes from DEPLOYMENT_MODE and defaults to classic.
"""

from app import create_app
from config import Config

app = create_app()

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=Config.PORT, debug=app.config['DEBUG'])
