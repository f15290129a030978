from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blog.database import get_db
from blog.dependencies import get_current_user
from blog.exceptions import Conflict
from blog.models import User
from blog.schemas import UserLogin, UserRegister
from blog.security import build_access_token
from blog.services import user_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session_payload(user: User) -> dict:
    return {
        "access_token": build_access_token(user_id=user.id, email=user.email),
        "token_type": "bearer",
        "user": user_service.user_to_dict(user),
    }


@router.post("/register", status_code=201)
async def register(data: UserRegister, db: AsyncSession = Depends(get_db)):
    try:
        user = await user_service.register_user(db, data)
    except IntegrityError:
        raise Conflict("Email is already registered")
    return {"message": "User created successfully", **_session_payload(user)}


@router.post("/login")
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await user_service.authenticate(db, data)
    return _session_payload(user)


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return {"user": user_service.user_to_dict(user)}
