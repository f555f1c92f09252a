from datetime import datetime

from pydantic import BaseModel, Field, HttpUrl

from pagehost.schemas.domain import TeardownStep


class LandingPageCreate(BaseModel):
    domain_id: int
    name: str = Field(min_length=1, max_length=255)
    affiliate_url: HttpUrl
    subdomain: str | None = Field(default=None, max_length=63)
    original_url: HttpUrl | None = None
    html_content: str | None = None
    deploy: bool = True  # start a deployment run for the new binding


class LandingPageRead(BaseModel):
    id: int
    domain_id: int
    subdomain: str
    name: str
    affiliate_url: str
    original_url: str | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class LandingPageCreateResponse(LandingPageRead):
    run_id: str | None = None


class LandingPageDeleteResponse(BaseModel):
    deleted: bool
    domain_deleted: bool
    teardown: list[TeardownStep]
