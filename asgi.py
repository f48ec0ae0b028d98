"""
asgi.py -- ASGI entry point for SessionGate.

Run with:  uvicorn asgi:app --reload

Deployments that deliver password-reset tokens out-of-band attach the
delivery hook here, e.g.:

    app.state.reset_notifier = send_reset_mail   # (username, token) -> None
"""

from api.main import app

__all__ = ["app"]
