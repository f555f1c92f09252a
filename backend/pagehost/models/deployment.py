from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pagehost.models.base import Base, TimestampMixin, utcnow

RUN_STATUSES = ("pending", "deploying", "deployed", "failed", "cancelled")
TERMINAL_RUN_STATUSES = frozenset({"deployed", "failed", "cancelled"})
LOG_LEVELS = ("info", "warning", "error")


class DomainDeployment(TimestampMixin, Base):
    __tablename__ = "domain_deployments"

    run_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    domain_id: Mapped[int] = mapped_column(
        ForeignKey("domains.id", ondelete="CASCADE"), nullable=False, index=True
    )
    domain_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Set when the run provisions a single binding instead of the whole domain
    landing_page_id: Mapped[int | None] = mapped_column(
        ForeignKey("landing_pages.id", ondelete="SET NULL"), nullable=True
    )
    target_host: Mapped[str] = mapped_column(String(255), nullable=False)
    hosting_project_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    deployment_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    domain: Mapped["Domain"] = relationship(back_populates="deployments")
    logs: Mapped[list["DeploymentLogEntry"]] = relationship(
        back_populates="deployment",
        order_by="DeploymentLogEntry.seq",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class DeploymentLogEntry(Base):
    """One append-only line in a run's log. Rows are never updated."""

    __tablename__ = "deployment_log_entries"
    __table_args__ = (UniqueConstraint("deployment_id", "seq", name="uq_deployment_log_seq"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deployment_id: Mapped[int] = mapped_column(
        ForeignKey("domain_deployments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    level: Mapped[str] = mapped_column(String(10), default="info", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    deployment: Mapped["DomainDeployment"] = relationship(back_populates="logs")
