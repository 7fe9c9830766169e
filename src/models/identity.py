from typing import Optional
from src.models.base import MongoBaseModel


class Identity(MongoBaseModel):
    """A resolved internal actor. Email is the natural key."""
    email: str
    display_name: str
    is_placeholder: bool = False


class ExternalUserMapping(MongoBaseModel):
    """Links (source_type, external_user_id) to an Identity."""
    source_type: str
    external_user_id: str
    identity_id: str
    external_name: Optional[str] = None
    external_email: Optional[str] = None
