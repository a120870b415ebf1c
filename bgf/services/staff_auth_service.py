"""
Staff access-code login.

Staff sign in with their full name and a personal access code; an active
user whose code and name both match receives an access token. Applicants
(role ``user``) have no access code.
"""

import hmac
import logging

from sqlalchemy import select

from bgf.models import db
from bgf.models.user import User
from bgf.services.jwt_service import issue_token

logger = logging.getLogger(__name__)


class InvalidCredentialsError(Exception):
    """Name/access code pair does not match an active staff member."""


def staff_login(full_name: str, access_code: str) -> dict:
    """
    Returns the token response body.

    Raises:
        InvalidCredentialsError: unknown code, name mismatch or inactive user.
    """
    full_name = (full_name or "").strip()
    access_code = (access_code or "").strip()
    if not full_name or not access_code:
        raise InvalidCredentialsError("full_name and access_code are required")

    user = db.session.execute(
        select(User).where(User.staff_access_code == access_code)
    ).scalar_one_or_none()

    if (
        user is None
        or not user.is_active
        or not hmac.compare_digest(user.full_name.casefold().encode(), full_name.casefold().encode())
    ):
        logger.warning("Failed staff login for '%s'", full_name)
        raise InvalidCredentialsError("Invalid name or access code")

    logger.info("Staff login", extra={"actor_id": user.id, "actor_role": str(user.role)})
    return issue_token(user)
