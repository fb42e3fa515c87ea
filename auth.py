import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

import database
import models
from config import AuthConfig, Settings, load_settings

logger = logging.getLogger(__name__)

ROLES = ("admin", "teacher", "student", "user")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


@dataclass
class DirectoryUser:
    username: str
    display_name: str = ""
    mail: str = ""
    groups: List[str] = field(default_factory=list)


class Directory(Protocol):
    """Account directory (LDAP or Azure AD) that checks credentials and reports group memberships."""

    def authenticate(self, username: str, password: str) -> Optional[DirectoryUser]:
        ...


@functools.lru_cache()
def get_settings() -> Settings:
    return load_settings()


def get_auth_config(settings: Settings = Depends(get_settings)) -> AuthConfig:
    return settings.auth


def get_directory(request: Request) -> Directory:
    directory = getattr(request.app.state, "directory", None)
    if directory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No account directory configured",
        )
    return directory


def derive_role(groups: List[str], config: AuthConfig) -> str:
    if any(group in config.admin_groups for group in groups):
        return "admin"
    if any(group in config.teacher_groups for group in groups):
        return "teacher"
    if any(group in config.student_groups for group in groups):
        return "student"
    return "user"


def ensure_roles(db: Session):
    existing = {role.name for role in db.query(database.Role).all()}
    for name in ROLES:
        if name not in existing:
            db.add(database.Role(name=name, description=f"{name.capitalize()} role"))
    db.flush()


def assign_user_role(db: Session, username: str, role: str) -> database.UserRole:
    """Replace whatever role ``username`` had with ``role``."""
    ensure_roles(db)
    role_record = db.query(database.Role).filter(database.Role.name == role).first()

    db.query(database.UserRole).filter(database.UserRole.user_id == username).delete()
    user_role = database.UserRole(user_id=username, role_id=role_record.id)
    db.add(user_role)
    db.commit()
    db.refresh(user_role)
    logger.info(f"Assigned role {role} to {username}")
    return user_role


def get_user_role(db: Session, username: str) -> Optional[str]:
    user_role = db.query(database.UserRole).filter(database.UserRole.user_id == username).first()
    return user_role.role.name if user_role else None


def create_access_token(data: dict, config: AuthConfig, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.secret_key, algorithm=config.algorithm)


def decode_token(token: str, config: AuthConfig) -> Optional[dict]:
    try:
        return jwt.decode(token, config.secret_key, algorithms=[config.algorithm])
    except JWTError:
        return None


def get_current_user(
        token: str = Depends(oauth2_scheme),
        config: AuthConfig = Depends(get_auth_config),
) -> models.CurrentUser:
    payload = decode_token(token, config)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return models.CurrentUser(username=payload["sub"], role=payload.get("role", "user"))


def require_roles(*roles):
    def dependency(current_user: models.CurrentUser = Depends(get_current_user)) -> models.CurrentUser:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized to perform this action",
            )
        return current_user

    return dependency


require_admin = require_roles("admin")
require_grader = require_roles("admin", "teacher")
