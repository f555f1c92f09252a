from datetime import datetime

from pydantic import BaseModel


class DeploymentLogRead(BaseModel):
    seq: int
    timestamp: datetime
    level: str
    message: str

    model_config = {"from_attributes": True}


class DeploymentSummary(BaseModel):
    run_id: str
    domain_id: int
    domain_name: str
    landing_page_id: int | None
    target_host: str
    hosting_project_id: str | None
    deployment_url: str | None
    status: str
    started_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class DeploymentRead(DeploymentSummary):
    logs: list[DeploymentLogRead]


class CancelResponse(BaseModel):
    run_id: str
    status: str
    cancel_requested: bool
