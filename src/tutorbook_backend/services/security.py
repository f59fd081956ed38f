'''
JWT handling and the current-teacher dependency.
Tokens are issued elsewhere; this service only verifies them.
'''
from datetime import datetime, timedelta, timezone
from typing import Optional, Annotated
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from ..common.config import settings
from ..common.logger import log
from ..models.token import TokenPayload
from ..database import models as db_models
from .teacher_service import TeacherService

# --- JWT Handling ---
class JWTHandler:
    @staticmethod
    def create_access_token(
        subject: str,
        expires_delta: Optional[timedelta] = None
    ) -> str:
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        expire = datetime.now(timezone.utc) + expires_delta
        to_encode = {"sub": str(subject), "exp": expire}
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> TokenPayload | None:
        try:
            payload = jwt.decode(
                token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
            )
            return TokenPayload(**payload)
        except (JWTError, ValueError) as e:
            log.warning(f"JWT decode/validation error: {e}")
            return None

# --- Current Teacher Dependency ---
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

async def verify_token_and_get_teacher(
    token: Annotated[str, Depends(oauth2_scheme)],
    teacher_service: Annotated[TeacherService, Depends(TeacherService)]
) -> db_models.Teachers:
    """
    Verifies the bearer token and returns the active Teacher it names.
    Every business endpoint is scoped to this teacher.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = JWTHandler.decode_token(token)
    if not token_data or not token_data.sub:
        log.warning("JWT decode failed or invalid token structure.")
        raise credentials_exception

    teacher = await teacher_service.get_teacher_by_email(token_data.sub)
    if teacher is None:
        log.warning(f"Teacher '{token_data.sub}' not found during token verification.")
        raise credentials_exception

    if not teacher.is_active:
        log.warning(f"Teacher '{token_data.sub}' is not active.")
        raise credentials_exception

    return teacher
