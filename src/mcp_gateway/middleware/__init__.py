"""
Gateway Middleware

HTTP middleware functions wired into the application by ``create_app``.
"""
