from pagehost.models.base import Base, TimestampMixin
from pagehost.models.domain import Domain
from pagehost.models.landing_page import LandingPage
from pagehost.models.deployment import DeploymentLogEntry, DomainDeployment

__all__ = [
    "Base",
    "TimestampMixin",
    "Domain",
    "LandingPage",
    "DomainDeployment",
    "DeploymentLogEntry",
]
