import logging
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from .errors import InvalidCredential

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    subject_id: str
    email: str
    display_name: str = ""
    picture_url: Optional[str] = None


def _claim(claims: Any, name: str) -> str:
    try:
        value = claims.get(name)
    except Exception:
        value = None
    return str(value or "").strip()


def identity_from_claims(claims: Optional[Mapping[str, Any]]) -> Identity:
    """Turn the provider's verified claims into an Identity.

    `claims` is whatever the sign-in layer hands back after verifying the
    token: Streamlit's `st.user` or a plain dict with the OIDC claim names.
    """
    if claims is None:
        raise InvalidCredential("No credential supplied")

    try:
        logged_in = claims.get("is_logged_in", True)
    except Exception:
        logged_in = True
    if logged_in is False:
        raise InvalidCredential("Identity provider reports the user is not signed in")

    subject_id = _claim(claims, "sub")
    email = _claim(claims, "email")
    if not subject_id or not email:
        raise InvalidCredential("Credential is missing the subject or email claim")

    display_name = _claim(claims, "name") or email.split("@", 1)[0]
    picture = _claim(claims, "picture") or None
    return Identity(
        subject_id=subject_id,
        email=email,
        display_name=display_name,
        picture_url=picture,
    )
