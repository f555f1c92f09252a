from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pagehost.models.base import Base, TimestampMixin

DNS_MANAGEMENT_MODES = ("provider", "external")
VERIFICATION_STATUSES = ("pending", "active", "inactive", "error")
DOMAIN_DEPLOYMENT_STATUSES = ("not_deployed", "pending", "deploying", "deployed", "failed")


class Domain(TimestampMixin, Base):
    __tablename__ = "domains"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # DNS linkage
    zone_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    nameservers: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    dns_management: Mapped[str] = mapped_column(String(20), default="provider", nullable=False)

    # Verification
    verification_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    expected_cname: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Deployment linkage
    hosting_project_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    deployment_status: Mapped[str] = mapped_column(String(20), default="not_deployed", nullable=False)
    last_deployed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deployment_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Run id currently holding this domain, cleared when that run is terminal
    active_run_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    ban_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    landing_pages: Mapped[list["LandingPage"]] = relationship(
        back_populates="domain", cascade="all, delete-orphan", passive_deletes=True
    )
    deployments: Mapped[list["DomainDeployment"]] = relationship(
        back_populates="domain", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_provider_managed(self) -> bool:
        return self.dns_management == "provider"
