from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import uuid
from slotwise.core.database import Base
from slotwise.scheduling.intervals import utcnow


class Team(Base):
    __tablename__ = "teams"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Membership creation order is the round-robin ordering
    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.created_at",
    )

    def __repr__(self):
        return f"<Team(id={self.id}, slug={self.slug})>"


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "host_id", name="uq_team_members_team_host"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    team_id = Column(Uuid(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    host_id = Column(Uuid(as_uuid=True), ForeignKey("hosts.id", ondelete="CASCADE"), nullable=False)

    # Only accepted invitations take part in team scheduling
    accepted = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    team = relationship("Team", back_populates="members")
    host = relationship("Host")

    def __repr__(self):
        return f"<TeamMember(team={self.team_id}, host={self.host_id}, accepted={self.accepted})>"
