from typing import Any, Dict, Optional, Union

from pydantic import BaseModel


class IdentityClaim(BaseModel):
    """The identity a challenge or proof is about. Clients name it by whichever field fits the chain."""

    identifier: Optional[str] = None
    handle: Optional[str] = None
    address: Optional[str] = None

    @property
    def claimed(self) -> Optional[str]:
        return self.identifier or self.handle or self.address


class ChallengeRequest(IdentityClaim):
    pass


class VerifyRequest(IdentityClaim):
    signature: Optional[str] = None
    public_key: Optional[str] = None


class SelfReportRequest(BaseModel):
    type: Optional[str] = None
    external_id: Optional[Union[int, str]] = None
    handle: Optional[str] = None
    address: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_primary: Optional[bool] = None


class FarcasterAddressRequest(BaseModel):
    address: Optional[str] = None
    farcaster_fid: Optional[Union[int, str]] = None
