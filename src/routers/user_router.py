# src/routers/user_router.py
from fastapi import APIRouter, Depends
from src.dependencies.auth import get_current_user
from src.UAA.schemas import UserRead

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserRead)
async def me(current_user=Depends(get_current_user)):
    return {
        "id": current_user.id,
        "email": current_user.email,
        "username": current_user.username,
        "display_name": current_user.display_name,
        "role": current_user.role,
        "is_active": current_user.is_active,
        "preferences": current_user.preferences or {},
        "created_at": current_user.created_at,
    }
