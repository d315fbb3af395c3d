"""Password hashing, CSRF tokens and flash messages for session-backed pages."""
import hmac
import secrets
from typing import List, Optional, Tuple

from passlib.context import CryptContext
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from .errors import CSRFError

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Rate limiter, keyed by client address
limiter = Limiter(key_func=get_remote_address)

CSRF_SESSION_KEY = "_csrf"
CSRF_FIELD = "_csrf"
CSRF_HEADER = "X-CSRF-Token"
FLASH_SESSION_KEY = "_flashes"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_csrf_token(request: Request) -> str:
    """Return the session's CSRF token, issuing one on first use."""
    token = request.session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        request.session[CSRF_SESSION_KEY] = token
    return token


def verify_csrf(request: Request, payload: dict) -> None:
    """
    Check the submitted CSRF token against the session.

    The token may come from the body, the query string or the
    X-CSRF-Token header.

    Raises:
        CSRFError: if the session has no token or the tokens differ
    """
    expected = request.session.get(CSRF_SESSION_KEY)
    submitted = (
        payload.get(CSRF_FIELD)
        or request.query_params.get(CSRF_FIELD)
        or request.headers.get(CSRF_HEADER)
    )
    if not expected or not submitted:
        raise CSRFError("Missing CSRF token")
    if not hmac.compare_digest(str(expected), str(submitted)):
        raise CSRFError("Invalid CSRF token")


def flash(request: Request, message: str, category: str = "info") -> None:
    """Queue a message for the next rendered page."""
    request.session.setdefault(FLASH_SESSION_KEY, [])
    request.session[FLASH_SESSION_KEY] = request.session[FLASH_SESSION_KEY] + [[category, message]]


def pop_flashed_messages(request: Request) -> List[Tuple[str, str]]:
    return [tuple(item) for item in request.session.pop(FLASH_SESSION_KEY, [])]


def session_owner_id(request: Request) -> Optional[int]:
    owner_id = request.session.get("admin_id")
    return int(owner_id) if owner_id is not None else None
