# app/transport/security.py
"""
Response hardening helpers.

The service has no authenticated surface: the only callers are the
webhook sender and health probes. What remains here is header hardening
and keeping internal error details out of production responses.
"""
from __future__ import annotations

from app.config import settings


class SecurityHeaders:
    """
    Add security headers.
    Implements OWASP recommended security headers.
    """

    @staticmethod
    def add_security_headers(response):
        """
        Add security headers to response.

        OWASP recommended headers for API security:
        https://cheatsheetseries.owasp.org/cheatsheets/REST_Security_Cheat_Sheet.html
        """

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Referrer policy - don't leak URLs to third parties
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # No scripts/styles anywhere; the HTML pages are plain static text
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # Cache control for API responses (default no-cache, endpoints can override)
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

        # HSTS (only in production with HTTPS)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Sanitize error messages for external responses.
    In production: Generic messages
    In dev: Detailed messages
    """
    if not is_production:
        return str(error)

    # Map internal errors to generic messages
    error_type = type(error).__name__

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "UploadError": "Destination unavailable",
        "FetchError": "Media unavailable",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }

    return generic_messages.get(error_type, "Internal server error")
