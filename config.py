import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    ldap_url: str = ""
    ldap_base_dn: str = ""
    ldap_bind_dn: str = ""
    ldap_bind_password: str = ""
    ldap_user_attribute: str = "sAMAccountName"
    admin_groups: List[str] = Field(default_factory=list)
    teacher_groups: List[str] = Field(default_factory=list)
    student_groups: List[str] = Field(default_factory=list)
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60


class Settings(BaseModel):
    database_url: str = "sqlite:///./wechselplan.db"
    log_level: str = "INFO"
    auth: AuthConfig = Field(default_factory=AuthConfig)


def _split_groups(value):
    return [group.strip() for group in value.split(",") if group.strip()]


def load_settings() -> Settings:
    """Build settings from the environment, reading a ``.env`` file first if present."""
    load_dotenv()

    auth = AuthConfig(
        ldap_url=os.getenv("LDAP_URL", ""),
        ldap_base_dn=os.getenv("LDAP_BASE_DN", ""),
        ldap_bind_dn=os.getenv("LDAP_BIND_DN", ""),
        ldap_bind_password=os.getenv("LDAP_BIND_PASSWORD", ""),
        ldap_user_attribute=os.getenv("LDAP_USER_ATTRIBUTE", "sAMAccountName"),
        admin_groups=_split_groups(os.getenv("ADMIN_GROUPS", "")),
        teacher_groups=_split_groups(os.getenv("TEACHER_GROUPS", "")),
        student_groups=_split_groups(os.getenv("STUDENT_GROUPS", "")),
        secret_key=os.getenv("SECRET_KEY", "change-me"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")),
    )
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./wechselplan.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        auth=auth,
    )
