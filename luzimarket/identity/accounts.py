"""
accounts.py: Registration and password login.

Passwords are hashed with bcrypt. Unknown e-mail and wrong password both end
in Unauthorized after a bcrypt comparison, so response timing does not reveal
which accounts exist.
"""
import logging
from typing import Optional

import bcrypt

from luzimarket.errors import Unauthorized
from luzimarket.identity.schemas import UserRecord
from luzimarket.store import Store

logger = logging.getLogger(__name__)

_DUMMY_HASH = bcrypt.hashpw(b"luzimarket-dummy-password", bcrypt.gensalt()).decode("utf-8")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


async def register_user(
    store: Store, email: str, password: str, name: Optional[str] = None
) -> UserRecord:
    """Create an account. Raises DuplicateAccount if the e-mail is taken."""
    user = await store.create_user(email, hash_password(password), name)
    logger.info("Registered user user_id=%s", user.user_id)
    return user


async def authenticate(store: Store, email: str, password: str) -> UserRecord:
    user = await store.get_user_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        raise Unauthorized()
    if not verify_password(password, user.password_hash):
        logger.warning("Failed login user_id=%s", user.user_id)
        raise Unauthorized()
    return user
