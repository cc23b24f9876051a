# catalog_access/routers/users.py
from fastapi import APIRouter, Depends, Query

from catalog_access.core.auth import require_admin
from catalog_access.core.config import Settings
from catalog_access.database import get_storage
from catalog_access.dependencies import get_app_settings
from catalog_access.models.user import User
from catalog_access.repositories.storage import Storage
from catalog_access.schemas.auth import UserRead
from catalog_access.schemas.user import DeleteResult, UserCreate, UserUpdate
from catalog_access.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["Users"])


def get_user_service(settings: Settings = Depends(get_app_settings)) -> UserService:
    return UserService(settings)


# -------- Admin endpoints --------


@router.get("", response_model=list[UserRead])
def list_users(
    storage: Storage = Depends(get_storage),
    service: UserService = Depends(get_user_service),
    _admin: User = Depends(require_admin),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
):
    """
    List all users (admin only).

    Pagination via skip/limit.
    """
    return [UserRead.model_validate(u) for u in service.list_users(storage, skip, limit)]


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    user_id: int,
    storage: Storage = Depends(get_storage),
    service: UserService = Depends(get_user_service),
    _admin: User = Depends(require_admin),
):
    """
    Get a specific user by id (admin only).
    """
    return UserRead.model_validate(service.get_user(storage, user_id))


@router.post("", response_model=UserRead, status_code=201)
def create_user(
    payload: UserCreate,
    storage: Storage = Depends(get_storage),
    service: UserService = Depends(get_user_service),
    admin: User = Depends(require_admin),
):
    """
    Create a user (admin only).

    Only the primary admin may create another admin.
    """
    return UserRead.model_validate(service.create_user(storage, admin, payload))


@router.put("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    payload: UserUpdate,
    storage: Storage = Depends(get_storage),
    service: UserService = Depends(get_user_service),
    admin: User = Depends(require_admin),
):
    """
    Update a user (admin only, partial).

    Role changes and edits to the primary admin require the primary admin.
    """
    return UserRead.model_validate(service.update_user(storage, admin, user_id, payload))


@router.delete("/{user_id}", response_model=DeleteResult)
def delete_user(
    user_id: int,
    storage: Storage = Depends(get_storage),
    service: UserService = Depends(get_user_service),
    admin: User = Depends(require_admin),
):
    """
    Delete a user with their tokens and device sessions (admin only).

    The primary admin can never be deleted, and admins cannot delete
    themselves.
    """
    service.delete_user(storage, admin, user_id)
    return DeleteResult(success=True)
