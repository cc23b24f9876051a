# catalog_access/services/user_service.py
import logging

from catalog_access.core.config import Settings
from catalog_access.core.errors import Forbidden, NotFound, ValidationError
from catalog_access.core.security import hash_password, normalize_email, normalize_phone
from catalog_access.models.user import User
from catalog_access.repositories.storage import Storage
from catalog_access.schemas.user import UserCreate, UserUpdate

logger = logging.getLogger(__name__)


class UserService:
    """
    Business logic for user administration.

    Responsibilities:
      - enforce the primary-admin rules
      - normalize phone handles and reject duplicates
      - orchestrate repository operations inside one transaction

    Primary-admin rules:
      - only the primary admin grants/revokes admin or hands over the role
      - a non-primary admin cannot modify or delete the primary admin
      - nobody deletes the primary admin, and nobody deletes themselves
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    # ----- Reads -----

    def list_users(self, storage: Storage, skip: int, limit: int) -> list[User]:
        """List users with pagination (admin only)."""
        return storage.users.list(skip=skip, limit=limit)

    def get_user(self, storage: Storage, user_id: int) -> User:
        """
        Get a user by id (admin only).

        Raises:
            NotFound(404): if not found.
        """
        user = storage.users.get_by_id(user_id)
        if not user:
            raise NotFound("User not found")
        return user

    # ----- Writes -----

    def _normalize_phone(self, storage: Storage, raw: str, owner_id: int | None = None) -> str:
        phone = normalize_phone(raw, self.settings.PHONE_COUNTRY_CODE)
        existing = storage.users.get_by_phone(phone)
        if existing is not None and existing.id != owner_id:
            raise ValidationError("Phone number is already registered")
        return phone

    def create_user(self, storage: Storage, actor: User, payload: UserCreate) -> User:
        """
        Create a user (admin only).

        Raises:
            Forbidden(403): a non-primary admin tries to create an admin.
            ValidationError(400): duplicate phone, admin without password.
        """
        if payload.is_admin and not actor.is_primary_admin:
            raise Forbidden("Only the primary admin can create admins")
        if payload.is_admin and not payload.password:
            raise ValidationError("Admins need a password")

        with storage.transaction():
            phone = self._normalize_phone(storage, payload.phone)
            user = storage.users.create(
                User(
                    name=payload.name,
                    phone=phone,
                    email=normalize_email(payload.email) if payload.email else None,
                    city=payload.city,
                    password_hash=hash_password(payload.password) if payload.password else None,
                    is_admin=payload.is_admin,
                )
            )
            user_id = user.id

        logger.info("Admin %s created user %s (admin=%s)", actor.id, user_id, payload.is_admin)
        return self.get_user(storage, user_id)

    def update_user(
        self, storage: Storage, actor: User, user_id: int, payload: UserUpdate
    ) -> User:
        """
        Partial update (admin only).

        Raises:
            NotFound(404): unknown user.
            Forbidden(403): primary-admin rules.
            ValidationError(400): duplicate phone, demoting the primary admin.
        """
        target = self.get_user(storage, user_id)

        if target.is_primary_admin and not actor.is_primary_admin:
            raise Forbidden("Only the primary admin can modify the primary admin")

        changes_roles = payload.is_admin is not None or payload.is_primary_admin is not None
        if changes_roles and not actor.is_primary_admin:
            raise Forbidden("Only the primary admin can change admin roles")

        if target.is_primary_admin:
            if payload.is_admin is False:
                raise ValidationError("The primary admin cannot be demoted")
            if payload.is_primary_admin is False:
                raise ValidationError("Hand over the primary role by promoting another admin")

        with storage.transaction():
            phone = None
            if payload.phone is not None:
                phone = self._normalize_phone(storage, payload.phone, owner_id=target.id)

            storage.users.update_details(
                target.id,
                name=payload.name,
                phone=phone,
                email=normalize_email(payload.email) if payload.email else None,
                city=payload.city,
            )

            if payload.password:
                storage.users.set_password(target.id, hash_password(payload.password))

            if payload.is_admin is not None and payload.is_admin != target.is_admin:
                storage.users.set_admin(target.id, payload.is_admin)

            if payload.is_primary_admin and not target.is_primary_admin:
                storage.users.transfer_primary_admin(actor.id, target.id)
                logger.info("Primary admin role moved from %s to %s", actor.id, target.id)

        logger.info("Admin %s updated user %s", actor.id, user_id)
        return self.get_user(storage, user_id)

    def delete_user(self, storage: Storage, actor: User, user_id: int) -> None:
        """
        Delete a user and everything bound to them (admin only).

        Raises:
            NotFound(404): unknown user.
            Forbidden(403): target is the primary admin.
            ValidationError(400): actor deleting themselves.
        """
        target = self.get_user(storage, user_id)

        if target.is_primary_admin:
            raise Forbidden("The primary admin cannot be deleted")
        if target.id == actor.id:
            raise ValidationError("You cannot delete your own account")

        with storage.transaction():
            storage.devices.delete_for_user(target.id)
            storage.sessions.delete_for_user(target.id)
            storage.tokens.delete_for_user(target.id)
            storage.users.delete(target.id)

        logger.info("Admin %s deleted user %s", actor.id, user_id)


def seed_primary_admin(storage: Storage, settings: Settings) -> User | None:
    """
    Make sure a primary admin exists, using ADMIN_PHONE / ADMIN_PASSWORD.

    Does nothing when a primary admin already exists or the seed settings
    are missing. An existing account with the seed phone is promoted.
    """
    existing = storage.users.get_primary_admin()
    if existing is not None:
        return existing

    if not settings.ADMIN_PHONE or not settings.ADMIN_PASSWORD:
        logger.warning("No primary admin configured (ADMIN_PHONE / ADMIN_PASSWORD unset)")
        return None

    phone = normalize_phone(settings.ADMIN_PHONE, settings.PHONE_COUNTRY_CODE)
    with storage.transaction():
        user = storage.users.get_by_phone(phone)
        if user is None:
            user = storage.users.create(
                User(
                    name=settings.ADMIN_NAME,
                    phone=phone,
                    password_hash=hash_password(settings.ADMIN_PASSWORD),
                    is_admin=True,
                    is_primary_admin=True,
                    profile_completed=True,
                )
            )
        else:
            storage.users.set_password(user.id, hash_password(settings.ADMIN_PASSWORD))
            # Transfer onto itself: sets is_primary_admin and is_admin together
            storage.users.transfer_primary_admin(user.id, user.id)
        user_id = user.id

    logger.info("Seeded primary admin %s (%s)", user_id, phone)
    return storage.users.get_by_id(user_id)
