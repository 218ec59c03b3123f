"""
Request Identity

Who is acting on a request. A merchant-signed request and a dashboard user
with a bearer token resolve to different variants of one tagged union.
"""
from typing import Annotated, Literal, Union
from pydantic import BaseModel, Field


class MerchantIdentity(BaseModel):
    """HMAC-authenticated merchant server."""
    kind: Literal["merchant"] = "merchant"
    merchant_id: str
    user_id: str
    role: Literal["MERCHANT"] = "MERCHANT"


class UserIdentity(BaseModel):
    """Dashboard user authenticated with an access token."""
    kind: Literal["user"] = "user"
    user_id: str
    role: str


Identity = Annotated[Union[MerchantIdentity, UserIdentity], Field(discriminator="kind")]
