from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.audit import log_audit
from app.core.enums import AuditAction, UserRole
from app.core.security import create_access_token, hash_password, require_admin, verify_password
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import OperatorCreate, OperatorOut, TokenOut

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenOut)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)):
    res = await db.execute(select(User).where(User.username == form_data.username))
    user = res.scalars().first()
    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    await log_audit(db, int(user.id), AuditAction.LOGIN, {"username": form_data.username})

    token = create_access_token(str(user.id), user.role)
    return {"access_token": token}


@router.post("/operators", response_model=OperatorOut, status_code=201)
async def create_operator(
    payload: OperatorCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_admin),
):
    """Admins register the operators who price quotations"""
    res = await db.execute(select(User).where(User.username == payload.username))
    if res.scalars().first():
        raise HTTPException(status_code=400, detail="Username already taken")

    user = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role or UserRole.OPERATOR,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return OperatorOut(id=user.id, username=user.username, email=user.email, role=user.role)
