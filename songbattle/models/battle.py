import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from songbattle.db.base import Base


class BattleStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class Visibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class RoundPhase(str, enum.Enum):
    PENDING = "pending"
    SUBMISSION = "submission"
    VOTING = "voting"
    COMPLETED = "completed"


# Phases the scheduler scans; pending and completed rounds are never touched.
IN_FLIGHT_PHASES = (RoundPhase.SUBMISSION.value, RoundPhase.VOTING.value)


class Battle(Base):
    __tablename__ = "battles"
    __table_args__ = (
        Index("ix_battles_creator_id", "creator_id"),
        Index("ix_battles_visibility_status", "visibility", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(length=50), nullable=False)
    creator_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    visibility: Mapped[str] = mapped_column(String(length=16), nullable=False)  # "public" or "private"
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    double_submissions: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    invite_code: Mapped[str] = mapped_column(String(length=16), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(length=16), nullable=False)  # "active" or "completed"
    # No FK: rounds already reference battles, and the cycle would need ALTER on SQLite.
    current_round_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    creator: Mapped["User"] = relationship("User")
    rounds: Mapped[list["Round"]] = relationship(
        "Round",
        back_populates="battle",
        order_by="Round.number",
    )
    participants: Mapped[list["Participant"]] = relationship("Participant", back_populates="battle")


class Round(Base):
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("battle_id", "number", name="uq_rounds_battle_number"),
        Index("ix_rounds_battle_id", "battle_id"),
        Index("ix_rounds_phase", "phase"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    battle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("battles.id"),
        nullable=False,
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    theme: Mapped[str] = mapped_column(String(length=200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    submission_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    voting_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    phase: Mapped[str] = mapped_column(String(length=16), nullable=False)  # pending | submission | voting | completed
    playlist_url: Mapped[Optional[str]] = mapped_column(String(length=512), nullable=True)
    playlist_id: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    voting_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    battle: Mapped["Battle"] = relationship("Battle", back_populates="rounds")
    submissions: Mapped[list["Submission"]] = relationship("Submission", back_populates="round")


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("battle_id", "user_id", name="uq_participants_battle_user"),
        Index("ix_participants_battle_id", "battle_id"),
        Index("ix_participants_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    battle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("battles.id"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    rounds_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_champion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    battle: Mapped["Battle"] = relationship("Battle", back_populates="participants")
    user: Mapped["User"] = relationship("User")


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("round_id", "track_url", name="uq_submissions_round_track"),
        UniqueConstraint("round_id", "user_id", "position", name="uq_submissions_round_user_position"),
        Index("ix_submissions_round_id", "round_id"),
        Index("ix_submissions_round_user", "round_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    round_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("rounds.id"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    track_url: Mapped[str] = mapped_column(String(length=255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # 1 or 2
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Written only by vote award/removal.
    tally: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    round: Mapped["Round"] = relationship("Round", back_populates="submissions")
    user: Mapped["User"] = relationship("User")
    votes: Mapped[list["Vote"]] = relationship("Vote", back_populates="submission")


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        # A voter may stack several votes on one entry; the slot keeps the per-round cap race-free.
        UniqueConstraint("round_id", "voter_id", "slot", name="uq_votes_round_voter_slot"),
        Index("ix_votes_round_id", "round_id"),
        Index("ix_votes_round_voter", "round_id", "voter_id"),
        Index("ix_votes_submission_id", "submission_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    round_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("rounds.id"),
        nullable=False,
    )
    voter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
    )
    submission_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("submissions.id"),
        nullable=False,
    )
    slot: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..max votes per round
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    submission: Mapped["Submission"] = relationship("Submission", back_populates="votes")
    voter: Mapped["User"] = relationship("User")
