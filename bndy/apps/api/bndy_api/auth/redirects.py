"""Post-authentication redirect targets.

Redirect targets supplied by clients are only honoured as same-site relative
paths, so a crafted link can never bounce a fresh session to another origin.
"""

from typing import Optional
from urllib.parse import urlencode

from bndy_api.config.env import get_app_base_url, get_login_url

ONBOARDING_PATH = "/onboarding"
DASHBOARD_PATH = "/dashboard"

MAX_REDIRECT_LENGTH = 512


def safe_redirect_path(value: Optional[str]) -> Optional[str]:
    """Return ``value`` if it is a safe relative path ("/x", not "//x" or "/\\x"), else None."""
    if not value or len(value) > MAX_REDIRECT_LENGTH:
        return None
    if not value.startswith("/") or value.startswith("//") or value.startswith("/\\"):
        return None
    if any(ch in value for ch in "\r\n\t"):
        return None
    return value


def post_auth_redirect(stored: Optional[str], profile_completed: bool) -> str:
    """Absolute app URL to land on after sign-in.

    Incomplete profiles always go through onboarding first.
    """
    if not profile_completed:
        path = ONBOARDING_PATH
    else:
        path = safe_redirect_path(stored) or DASHBOARD_PATH
    return f"{get_app_base_url()}{path}"


def login_error_redirect(error_code: Optional[str] = None) -> str:
    """Login page URL carrying a coarse error code (no other detail)."""
    if not error_code:
        return get_login_url()
    return f"{get_login_url()}?{urlencode({'error': error_code})}"
