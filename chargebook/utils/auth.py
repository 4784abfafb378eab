from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

VERIFICATION_TOKEN_TYPE = "booking_verification"


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=30))
    payload = {"sub": str(user_id), "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    if payload.get("typ") == VERIFICATION_TOKEN_TYPE:
        raise ValueError("verification tokens cannot be used for authentication")
    sub = payload.get("sub")
    if sub is None:
        raise ValueError("token missing sub")
    try:
        return int(sub)
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc


def create_verification_token(
    *,
    booking_id: int,
    version: int,
    secret: str,
    algorithm: str = "HS256",
) -> str:
    """Token presented at the station (e.g. as a QR code) to complete an approved booking."""
    payload = {
        "typ": VERIFICATION_TOKEN_TYPE,
        "bid": str(booking_id),
        "ver": version,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_verification_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:
        raise ValueError("invalid verification token") from exc

    if payload.get("typ") != VERIFICATION_TOKEN_TYPE:
        raise ValueError("not a verification token")
    try:
        return int(payload["bid"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("verification token has no booking id") from exc
