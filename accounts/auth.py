"""Bearer-token identity for the JSON API.

Tokens are HS256 JWTs signed with ``settings.AUTH_JWT["SECRET"]`` whose
``sub`` claim is the user's primary key.  Login and signup live outside this
project; :func:`issue_access_token` is what those flows (and the tests) use to
mint a token.
"""

import logging
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _jwt_settings() -> dict:
    return getattr(settings, "AUTH_JWT", {}) or {}


def issue_access_token(user) -> str:
    conf = _jwt_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.pk),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=conf.get("EXPIRES_MINUTES", 60))).timestamp()),
    }
    return jwt.encode(payload, conf["SECRET"], algorithm=conf.get("ALGORITHM", "HS256"))


def get_user_from_request(request):
    """Return the active user named by the request's Bearer token, or None."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    token = auth.split(" ", 1)[1].strip()
    if not token:
        return None

    conf = _jwt_settings()
    try:
        claims = jwt.decode(token, conf["SECRET"], algorithms=[conf.get("ALGORITHM", "HS256")])
    except jwt.PyJWTError:
        logger.info("Rejected bearer token on %s", request.path)
        return None

    User = get_user_model()
    user = User.objects.filter(pk=claims.get("sub")).first()
    if user is None or not user.is_active:
        return None
    return user


def jwt_required(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        user = get_user_from_request(request)
        if user is None:
            return JsonResponse(
                {"ok": False, "error": {"code": "unauthorized", "message": "Authentication required"}},
                status=401,
            )
        request.user = user
        return view(request, *args, **kwargs)
    return wrapper
