"""Request-scoped caller context.

The context is built once per HTTP request from the bearer token and passed
explicitly to every service call; nothing about the caller is kept in
process-wide state.
"""
from __future__ import annotations

from dataclasses import dataclass

from flask import Request, current_app
from itsdangerous import BadSignature, URLSafeTimedSerializer

TOKEN_SALT = "auth-token"


@dataclass(frozen=True)
class RequestContext:
    user_id: int | None = None
    business_id: int | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def can_access_business(self, business_id: int) -> bool:
        return self.business_id is None or self.business_id == business_id


ANONYMOUS = RequestContext()


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user_id: int, business_id: int | None = None) -> str:
    payload: dict[str, object] = {"user_id": user_id}
    if business_id is not None:
        payload["business_id"] = business_id
    return _serializer().dumps(payload)


def context_from_request(request: Request) -> RequestContext:
    """Decode the Authorization header into a context.

    Missing, invalid or expired tokens yield the anonymous context.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return ANONYMOUS

    token = auth_header[7:]
    try:
        payload = _serializer().loads(token, max_age=current_app.config["AUTH_TOKEN_MAX_AGE"])
    except BadSignature:
        # Covers SignatureExpired as well
        return ANONYMOUS

    return RequestContext(user_id=payload.get("user_id"), business_id=payload.get("business_id"))
