from sqlalchemy import Boolean, Column, DateTime, Integer, String

from .base import Base


class ServiceRecord(Base):
    """A monitored service as stored in the registry."""

    __tablename__ = "services"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    port = Column(Integer, nullable=True)
    action = Column(String, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    triggered = Column(Boolean, default=False, nullable=False)
    alert_count = Column(Integer, default=0, nullable=False)
    last_alert_date = Column(DateTime(timezone=True), nullable=True)
    last_success_date = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<ServiceRecord(id='{self.id}', name='{self.name}', action='{self.action}', "
            f"enabled={self.enabled}, triggered={self.triggered})>"
        )
