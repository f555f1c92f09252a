from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pagehost.models.base import Base, TimestampMixin


class LandingPage(TimestampMixin, Base):
    __tablename__ = "landing_pages"
    __table_args__ = (
        UniqueConstraint("domain_id", "subdomain", name="uq_landing_pages_domain_subdomain"),
        # At most one root (empty subdomain) binding per domain
        Index(
            "uq_landing_pages_root_binding",
            "domain_id",
            unique=True,
            postgresql_where=text("subdomain = ''"),
            sqlite_where=text("subdomain = ''"),
        ),
    )

    domain_id: Mapped[int] = mapped_column(
        ForeignKey("domains.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subdomain: Mapped[str] = mapped_column(String(63), default="", nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    affiliate_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    original_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    html_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    domain: Mapped["Domain"] = relationship(back_populates="landing_pages")

    @property
    def is_root_binding(self) -> bool:
        return self.subdomain == ""
