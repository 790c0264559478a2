from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr


class BootstrapRequest(BaseModel):
    type: Optional[str] = None
    identifier: Optional[str] = None
    handle: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "evm",
                "identifier": "0x52908400098527886e0f7030069857d2e4169ee7",
                "display_name": "Kickflip Kid",
            }
        }
    )


class BootstrapResponse(BaseModel):
    success: bool = True
    user_id: str
    identity_id: Optional[str] = None
    created_user: bool = False
    expires_at: Optional[datetime] = None


class MagicLinkRequest(BaseModel):
    identifier: Optional[str] = None
    handle: Optional[str] = None
    avatar_url: Optional[str] = None
    redirect: Optional[str] = None


class MagicLinkResponse(BaseModel):
    success: bool = True
    expires_at: datetime


class SignUpRequest(BaseModel):
    """
    Email registration with a chosen handle.

    The handle is reserved for a future Hive account, so it must not exist on
    chain yet.
    """

    email: EmailStr
    display_name: Optional[str] = None
    handle: Optional[str] = None
    avatar_url: Optional[str] = None
    redirect: Optional[str] = None


class SessionExchangeRequest(BaseModel):
    type: str = "email_magic"
    identifier: Optional[str] = None
    handle: Optional[str] = None
    device_id: Optional[str] = None
    user_agent: Optional[str] = None
    create_user: bool = True


class SessionExchangeResponse(BaseModel):
    user_id: str
    auth_method_id: Optional[str] = None
    refresh_token: str
    expires_at: datetime
