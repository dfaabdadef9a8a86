from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.orm import relationship
import uuid
from slotwise.core.database import Base
from slotwise.scheduling.intervals import utcnow


class Host(Base):
    __tablename__ = "hosts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")

    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Schedules belong to exactly one host and go with it
    schedules = relationship(
        "Schedule",
        back_populates="host",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Host(id={self.id}, email={self.email})>"
