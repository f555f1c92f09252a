from pydantic import BaseModel


class HostResolutionRead(BaseModel):
    host: str
    subdomain: str
    domain_name: str
    has_subdomain: bool
    is_recognized_prefix: bool
    is_tld_only: bool
    is_special_host: bool
    issues: list[str]
    domain_id: int | None = None
    landing_page_id: int | None = None
