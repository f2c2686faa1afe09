"""
OpenID Connect login for the Handball service.

Design goals:
- One provider, discovered once at startup; refuse to serve if that fails.
- Authorization-code flow with server-side token exchange and id token validation.
- Cookie-based session for the same-origin UI.
"""
