"""
api/security_headers.py -- Response security headers.

Two sets: the page set (full CSP, framing, HSTS, permissions) for everything
the browser renders, and a narrower set for /api/ responses, which are JSON
and never framed or rendered. The gate middleware applies them to every
response, redirects included.
"""

from __future__ import annotations

_CSP = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' https://challenges.cloudflare.com",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
        "img-src 'self' data: https: blob:",
        "font-src 'self' https://fonts.gstatic.com data:",
        "connect-src 'self' https://api.paystack.co https://api.resend.com",
        "frame-src 'self' https://js.paystack.co https://challenges.cloudflare.com",
        "object-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
        "upgrade-insecure-requests",
    ]
)

PAGE_SECURITY_HEADERS: dict[str, str] = {
    "Content-Security-Policy": _CSP,
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(self), payment=(self), usb=()",
    "X-DNS-Prefetch-Control": "on",
    "X-Permitted-Cross-Domain-Policies": "none",
}

API_SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "interest-cohort=()",
    "Cache-Control": "no-store",
}


def headers_for(path: str) -> dict[str, str]:
    if path == "/api" or path.startswith("/api/"):
        return API_SECURITY_HEADERS
    return PAGE_SECURITY_HEADERS


def apply_security_headers(response, path: str) -> None:
    for name, value in headers_for(path).items():
        response.headers[name] = value
