import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    # Stored naive; every timestamp column holds UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DebateStatus(enum.Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class DebateFormat(enum.Enum):
    ONE_VS_ONE = "ONE_VS_ONE"
    ONE_VS_MANY = "ONE_VS_MANY"
    MULTI_SIDED = "MULTI_SIDED"


class DebateTopicType(enum.Enum):
    POLITICS = "POLITICS"
    ECONOMICS = "ECONOMICS"
    TECHNOLOGY = "TECHNOLOGY"
    SCIENCE = "SCIENCE"
    HEALTH_MEDICINE = "HEALTH_MEDICINE"
    EDUCATION = "EDUCATION"
    SOCIETY_CULTURE = "SOCIETY_CULTURE"
    PHILOSOPHY = "PHILOSOPHY"
    LAW_JUSTICE = "LAW_JUSTICE"
    INTERNATIONAL_RELATIONS = "INTERNATIONAL_RELATIONS"
    ARTS = "ARTS"
    ENTERTAINMENT = "ENTERTAINMENT"
    SPORTS = "SPORTS"
    RELIGION_SPIRITUALITY = "RELIGION_SPIRITUALITY"
    PSYCHOLOGY_BEHAVIOR = "PSYCHOLOGY_BEHAVIOR"
    ENVIRONMENT_CLIMATE = "ENVIRONMENT_CLIMATE"
    HISTORY = "HISTORY"


class ParticipantRole(enum.Enum):
    PROPOSER = "PROPOSER"
    OPPOSER = "OPPOSER"
    NEUTRAL = "NEUTRAL"


class ParticipantStatus(enum.Enum):
    ACTIVE = "ACTIVE"
    FORFEITED = "FORFEITED"


class ReferenceType(enum.Enum):
    ACADEMIC_PAPER = "ACADEMIC_PAPER"
    VIDEO = "VIDEO"
    NEWS_ARTICLE = "NEWS_ARTICLE"
    GOVERNMENT_DOCUMENT = "GOVERNMENT_DOCUMENT"
    BOOK = "BOOK"
    WEBSITE = "WEBSITE"


class DefinitionStatus(enum.Enum):
    PROPOSED = "PROPOSED"
    ACCEPTED = "ACCEPTED"
    CONTESTED = "CONTESTED"
    DEPRECATED = "DEPRECATED"


class WinConditionType(enum.Enum):
    FORFEIT = "FORFEIT"
    VOTE_COUNT = "VOTE_COUNT"


class NotificationType(enum.Enum):
    ARGUMENT_VOTE = "ARGUMENT_VOTE"
    DEFINITION_VOTE = "DEFINITION_VOTE"
    NEW_ARGUMENT = "NEW_ARGUMENT"
    NEW_DEFINITION = "NEW_DEFINITION"
    DEFINITION_ACCEPTED = "DEFINITION_ACCEPTED"
    DEFINITION_IMPROVED = "DEFINITION_IMPROVED"
    DEBATE_ACCEPTED = "DEBATE_ACCEPTED"
    DEBATE_COMPLETED = "DEBATE_COMPLETED"


class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True)
    auth_id = Column(String, unique=True, nullable=False)
    name = Column(String)
    email = Column(String, unique=True, nullable=True)
    password_hash = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    participations = relationship("DebateParticipant", back_populates="user")


class PasswordResetToken(Base):
    __tablename__ = "password_reset_token"

    id = Column(Integer, primary_key=True)
    email = Column(String, nullable=False, index=True)
    token = Column(String, unique=True, nullable=False)
    expires = Column(DateTime, nullable=False)


class Debate(Base):
    __tablename__ = "debate"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    format = Column(
        Enum(DebateFormat, name="debate_format"),
        nullable=False,
        default=DebateFormat.ONE_VS_ONE,
    )
    status = Column(
        Enum(DebateStatus, name="debate_status"),
        nullable=False,
        default=DebateStatus.OPEN,
        index=True,
    )
    max_participants = Column(Integer, nullable=False, default=2)
    turns_per_side = Column(Integer, nullable=False, default=3)
    turn_time_limit = Column(Integer, nullable=True)  # hours, None = unlimited
    min_references = Column(Integer, nullable=False, default=1)
    current_turn_number = Column(Integer, nullable=False, default=1)
    current_turn_side = Column(
        Enum(ParticipantRole, name="participant_role"),
        nullable=False,
        default=ParticipantRole.PROPOSER,
    )
    creator_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    creator = relationship("User")
    topics = relationship(
        "DebateTopic", back_populates="debate", cascade="all, delete-orphan"
    )
    participants = relationship(
        "DebateParticipant",
        back_populates="debate",
        cascade="all, delete-orphan",
        order_by="DebateParticipant.id",
    )
    arguments = relationship(
        "Argument",
        back_populates="debate",
        cascade="all, delete-orphan",
        order_by="Argument.created_at",
    )
    definitions = relationship(
        "Definition",
        back_populates="debate",
        cascade="all, delete-orphan",
        order_by="Definition.created_at",
    )
    win_condition = relationship(
        "WinCondition",
        back_populates="debate",
        uselist=False,
        cascade="all, delete-orphan",
    )


class DebateTopic(Base):
    __tablename__ = "debate_topic"
    __table_args__ = (UniqueConstraint("debate_id", "topic"),)

    id = Column(Integer, primary_key=True)
    debate_id = Column(Integer, ForeignKey("debate.id"), nullable=False)
    topic = Column(Enum(DebateTopicType, name="debate_topic_type"), nullable=False)

    debate = relationship("Debate", back_populates="topics")


class DebateParticipant(Base):
    __tablename__ = "debate_participant"

    id = Column(Integer, primary_key=True)
    debate_id = Column(Integer, ForeignKey("debate.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    role = Column(Enum(ParticipantRole, name="participant_role"), nullable=False)
    status = Column(
        Enum(ParticipantStatus, name="participant_status"),
        nullable=False,
        default=ParticipantStatus.ACTIVE,
    )
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    debate = relationship("Debate", back_populates="participants")
    user = relationship("User", back_populates="participations")
    arguments = relationship(
        "Argument", back_populates="participant", order_by="Argument.created_at"
    )


class Argument(Base):
    __tablename__ = "argument"

    id = Column(Integer, primary_key=True)
    debate_id = Column(Integer, ForeignKey("debate.id"), nullable=False, index=True)
    participant_id = Column(
        Integer, ForeignKey("debate_participant.id"), nullable=False
    )
    author_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    content = Column(Text, nullable=False)
    turn_number = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    response_to_id = Column(Integer, ForeignKey("argument.id"), nullable=True)
    rebuttal_to_id = Column(Integer, ForeignKey("argument.id"), nullable=True)

    debate = relationship("Debate", back_populates="arguments")
    participant = relationship("DebateParticipant", back_populates="arguments")
    author = relationship("User")
    references = relationship(
        "Reference", back_populates="argument", cascade="all, delete-orphan"
    )
    votes = relationship(
        "ArgumentVote", back_populates="argument", cascade="all, delete-orphan"
    )


class Definition(Base):
    __tablename__ = "definition"

    id = Column(Integer, primary_key=True)
    debate_id = Column(Integer, ForeignKey("debate.id"), nullable=False, index=True)
    term = Column(String, nullable=False)
    definition = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    status = Column(
        Enum(DefinitionStatus, name="definition_status"),
        nullable=False,
        default=DefinitionStatus.PROPOSED,
    )
    proposer_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    superseded_by_id = Column(Integer, ForeignKey("definition.id"), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    debate = relationship("Debate", back_populates="definitions")
    proposer = relationship("User")
    superseded_by = relationship("Definition", remote_side=[id])
    references = relationship(
        "Reference", back_populates="definition", cascade="all, delete-orphan"
    )
    votes = relationship(
        "DefinitionVote", back_populates="definition", cascade="all, delete-orphan"
    )


class Reference(Base):
    __tablename__ = "reference"

    id = Column(Integer, primary_key=True)
    argument_id = Column(Integer, ForeignKey("argument.id"), nullable=True)
    definition_id = Column(Integer, ForeignKey("definition.id"), nullable=True)
    type = Column(
        Enum(ReferenceType, name="reference_type"),
        nullable=False,
        default=ReferenceType.WEBSITE,
    )
    title = Column(String, nullable=False)
    url = Column(String, nullable=True)
    author = Column(String, nullable=True)
    publication = Column(String, nullable=True)
    published_at = Column(DateTime, nullable=True)
    accessed_at = Column(DateTime, nullable=False, default=utcnow)
    notes = Column(Text, nullable=True)

    argument = relationship("Argument", back_populates="references")
    definition = relationship("Definition", back_populates="references")


class ArgumentVote(Base):
    __tablename__ = "argument_vote"
    __table_args__ = (UniqueConstraint("argument_id", "user_id"),)

    id = Column(Integer, primary_key=True)
    argument_id = Column(Integer, ForeignKey("argument.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    support = Column(Boolean, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    argument = relationship("Argument", back_populates="votes")


class DefinitionVote(Base):
    __tablename__ = "definition_vote"
    __table_args__ = (UniqueConstraint("definition_id", "user_id"),)

    id = Column(Integer, primary_key=True)
    definition_id = Column(Integer, ForeignKey("definition.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    support = Column(Boolean, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    definition = relationship("Definition", back_populates="votes")


class WinCondition(Base):
    __tablename__ = "win_condition"

    id = Column(Integer, primary_key=True)
    debate_id = Column(Integer, ForeignKey("debate.id"), unique=True, nullable=False)
    type = Column(Enum(WinConditionType, name="win_condition_type"), nullable=False)
    winning_role = Column(Enum(ParticipantRole, name="participant_role"))
    decided_at = Column(DateTime, nullable=False, default=utcnow)
    description = Column(Text)

    debate = relationship("Debate", back_populates="win_condition")


class Notification(Base):
    __tablename__ = "notification"

    id = Column(Integer, primary_key=True)
    type = Column(Enum(NotificationType, name="notification_type"), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String)
    user_id = Column(Integer, ForeignKey("user.id"), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey("user.id"), nullable=True)
    debate_id = Column(Integer, ForeignKey("debate.id"), nullable=True)
    argument_id = Column(Integer, ForeignKey("argument.id"), nullable=True)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
