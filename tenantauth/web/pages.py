"""Minimal HTML responses for browser-facing auth endpoints."""

from __future__ import annotations

import html
import json

from fastapi.responses import HTMLResponse

_ERROR_MESSAGES = {
    "invalid_state": "This sign-in link is invalid. Please start again.",
    "invalid_token": "This sign-in link is invalid. Please start again.",
    "expired": "This sign-in link has expired. Please start again.",
    "already_used": "This sign-in link was already used.",
}


def popup_complete_page(redirect_url: str) -> HTMLResponse:
    """Page loaded in a sign-in popup: notify the opener and close."""
    target = json.dumps(redirect_url).replace("<", "\\u003c")
    body = (
        "<!doctype html><html><body><script>"
        f"var target = {target};"
        "if (window.opener) {"
        "window.opener.postMessage({type: 'auth-complete', redirect: target}, window.location.origin);"
        "window.close();"
        "} else { window.location.replace(target); }"
        "</script></body></html>"
    )
    return HTMLResponse(body)


def error_page(reason: str, status_code: int = 400) -> HTMLResponse:
    message = _ERROR_MESSAGES.get(reason, "Sign-in failed. Please try again.")
    body = (
        "<!doctype html><html><head><title>Sign-in error</title></head>"
        f"<body><h1>Sign-in error</h1><p>{html.escape(message)}</p></body></html>"
    )
    return HTMLResponse(body, status_code=status_code)
