# catalog_access/repositories/user_repo.py
from abc import ABC, abstractmethod

from sqlmodel import Session, select

from catalog_access.models.user import User


class UserRepository(ABC):
    """
    Data access layer for User.

    Responsibilities:
      - Pure storage operations (CRUD + queries)
      - No FastAPI, no HTTP, no business rules
      - Lifecycle flags (profile_completed, is_admin, is_primary_admin)
        change only through the dedicated methods below
    """

    @abstractmethod
    def get_by_id(self, user_id: int) -> User | None: ...

    @abstractmethod
    def get_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    def get_by_phone(self, phone: str) -> User | None: ...

    @abstractmethod
    def get_primary_admin(self) -> User | None: ...

    @abstractmethod
    def list(self, skip: int = 0, limit: int = 50) -> list[User]: ...

    @abstractmethod
    def create(self, user: User) -> User: ...

    @abstractmethod
    def complete_profile(
        self, user_id: int, *, name: str, phone: str, city: str, email: str
    ) -> User:
        """Overwrite the profile fields and set profile_completed."""

    @abstractmethod
    def update_details(
        self,
        user_id: int,
        *,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        city: str | None = None,
    ) -> User:
        """Partial update of display fields; None means "leave unchanged"."""

    @abstractmethod
    def set_password(self, user_id: int, password_hash: str) -> None: ...

    @abstractmethod
    def set_admin(self, user_id: int, is_admin: bool) -> User: ...

    @abstractmethod
    def transfer_primary_admin(self, from_user_id: int, to_user_id: int) -> None:
        """Move the primary-admin flag; the target also becomes an admin."""

    @abstractmethod
    def delete(self, user_id: int) -> bool: ...


class SqlUserRepository(UserRepository):
    """
    SQLModel-backed users.

    NOTE:
      - No commits here; the caller wraps mutations in
        ``storage.transaction()`` which commits or rolls back.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email).order_by(User.id)
        return self.session.exec(stmt).first()

    def get_by_phone(self, phone: str) -> User | None:
        stmt = select(User).where(User.phone == phone)
        return self.session.exec(stmt).first()

    def get_primary_admin(self) -> User | None:
        stmt = select(User).where(User.is_primary_admin == True)  # noqa: E712
        return self.session.exec(stmt).first()

    def list(self, skip: int = 0, limit: int = 50) -> list[User]:
        stmt = select(User).order_by(User.id).offset(skip).limit(limit)
        return list(self.session.exec(stmt).all())

    def create(self, user: User) -> User:
        self.session.add(user)
        self.session.flush()  # Assign PK
        self.session.refresh(user)
        return user

    def _require(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise LookupError(f"user {user_id} does not exist")
        return user

    def _save(self, user: User) -> User:
        self.session.add(user)
        self.session.flush()
        self.session.refresh(user)
        return user

    def complete_profile(
        self, user_id: int, *, name: str, phone: str, city: str, email: str
    ) -> User:
        user = self._require(user_id)
        user.name = name
        user.phone = phone
        user.city = city
        user.email = email
        user.profile_completed = True
        return self._save(user)

    def update_details(
        self,
        user_id: int,
        *,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        city: str | None = None,
    ) -> User:
        user = self._require(user_id)
        if name is not None:
            user.name = name
        if phone is not None:
            user.phone = phone
        if email is not None:
            user.email = email
        if city is not None:
            user.city = city
        return self._save(user)

    def set_password(self, user_id: int, password_hash: str) -> None:
        user = self._require(user_id)
        user.password_hash = password_hash
        self._save(user)

    def set_admin(self, user_id: int, is_admin: bool) -> User:
        user = self._require(user_id)
        user.is_admin = is_admin
        return self._save(user)

    def transfer_primary_admin(self, from_user_id: int, to_user_id: int) -> None:
        source = self._require(from_user_id)
        target = self._require(to_user_id)
        source.is_primary_admin = False
        self._save(source)
        target.is_primary_admin = True
        target.is_admin = True
        self._save(target)

    def delete(self, user_id: int) -> bool:
        user = self.session.get(User, user_id)
        if user is None:
            return False
        self.session.delete(user)
        self.session.flush()
        return True
