"""Admin account signup and login."""
import logging

from .config import settings
from .errors import AuthenticationError, ValidationError
from .models import Admin
from .security import hash_password, verify_password

logger = logging.getLogger(__name__)


class AccountService:
    """Creates admin accounts and checks their credentials."""

    def __init__(self, database):
        self.database = database

    async def signup(self, name: str, email: str, password: str) -> Admin:
        """
        Create an admin account.

        Raises:
            ValidationError: missing fields, short password or email taken
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name:
            raise ValidationError("Name cannot be empty", field="name")
        if not email or "@" not in email:
            raise ValidationError("A valid email is required", field="email")
        if len(password or "") < settings.MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters",
                field="password"
            )

        admin = await self.database.create_user(name, email, hash_password(password))
        if admin is None:
            raise ValidationError("An account with this email already exists", field="email")
        logger.info(f"Admin account created: id={admin.id}")
        return admin

    async def authenticate(self, email: str, password: str) -> Admin:
        """Return the admin for matching credentials or raise AuthenticationError."""
        admin = await self.database.get_user_by_email((email or "").strip().lower())
        if admin is None or not verify_password(password or "", admin.password_hash):
            raise AuthenticationError("Invalid email or password")
        return admin
