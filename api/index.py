"""
Vercel serverless entry point for the startup backend.

The app is built once per function instance. Its MongoDB connection is opened
by the first request that needs it and cached in process-wide state, so warm
invocations reuse it instead of reconnecting. Uploaded files only persist when
UPLOAD_FOLDER points at durable storage; the function filesystem is ephemeral.

For long-running hosts (Render, Railway, Fly.io, VPS) run gunicorn against
wsgi:app instead, see gunicorn.conf.py.
"""

import os
import sys

# Make the project root importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app  # noqa: E402
from config import SERVERLESS  # noqa: E402

# Vercel expects a WSGI callable named `app` at module level
app = create_app(SERVERLESS)
