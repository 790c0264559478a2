from typing import Optional

from pydantic import BaseModel


class MergePreviewRequest(BaseModel):
    type: Optional[str] = None
    identifier: Optional[str] = None


class MergeRequest(MergePreviewRequest):
    source_user_id: Optional[str] = None
    signature: Optional[str] = None
    public_key: Optional[str] = None
