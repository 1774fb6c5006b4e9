"""
SQLAlchemy ORM models for persistent storage.

Catalog tables (cards, card_prints) are populated by an external process and
are read-only to the engine. Every other table is written only by the
collection and deck-composition services.
"""

from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# CATALOG (read-only)
# =============================================================================


class CardDB(Base):
    """A card's rules identity, keyed by oracle id."""

    __tablename__ = "cards"

    oracle_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    mana_cost: Mapped[str | None] = mapped_column(String(100), nullable=True)
    type_line: Mapped[str] = mapped_column(String(255), default="")
    oracle_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    colors: Mapped[list[str]] = mapped_column(JSON, default=list)
    cmc: Mapped[float] = mapped_column(Float, default=0.0)
    legalities: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)

    prints: Mapped[list["CardPrintDB"]] = relationship(back_populates="card")

    def __repr__(self) -> str:
        return f"<CardDB(name={self.name}, oracle_id={self.oracle_id})>"


class CardPrintDB(Base):
    """A specific printed edition of a card."""

    __tablename__ = "card_prints"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    oracle_id: Mapped[str] = mapped_column(ForeignKey("cards.oracle_id"), index=True)
    set_code: Mapped[str] = mapped_column(String(6), default="")
    collector_number: Mapped[str] = mapped_column(String(20), default="")
    rarity: Mapped[str] = mapped_column(String(20), default="common")
    language: Mapped[str] = mapped_column(String(2), default="en")

    # Prices as decimal strings to preserve catalog precision
    price_usd: Mapped[str | None] = mapped_column(String(20), nullable=True)
    price_usd_foil: Mapped[str | None] = mapped_column(String(20), nullable=True)
    price_eur: Mapped[str | None] = mapped_column(String(20), nullable=True)
    price_eur_foil: Mapped[str | None] = mapped_column(String(20), nullable=True)

    card: Mapped["CardDB"] = relationship(back_populates="prints", lazy="joined")

    def __repr__(self) -> str:
        return f"<CardPrintDB(id={self.id}, set={self.set_code})>"


# =============================================================================
# COLLECTION
# =============================================================================


collection_entry_tags = Table(
    "collection_entry_tags",
    Base.metadata,
    Column(
        "entry_id",
        ForeignKey("collection_entries.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


deck_tags = Table(
    "deck_tags",
    Base.metadata,
    Column("deck_id", ForeignKey("decks.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class CollectionFolderDB(Base):
    """User-scoped organizational folder. Deleting it unfiles its entries."""

    __tablename__ = "collection_folders"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_folder_user_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    color: Mapped[str] = mapped_column(String(7), default="#3B82F6")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<CollectionFolderDB(name={self.name}, user_id={self.user_id})>"


class TagDB(Base):
    """User-scoped typed tag."""

    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", "type", name="uq_tag_user_name_type"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(50))
    type: Mapped[str] = mapped_column(String(20))
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)
    color: Mapped[str] = mapped_column(String(7), default="#6B7280")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<TagDB(name={self.name}, type={self.type})>"


class CollectionEntryDB(Base):
    """
    A user's owned copies of one print in one condition/finish.

    The natural key (user_id, card_print_id, is_foil, condition) is unique.
    """

    __tablename__ = "collection_entries"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "card_print_id",
            "is_foil",
            "condition",
            name="uq_collection_entry_natural_key",
        ),
        CheckConstraint("quantity >= 1", name="ck_collection_entry_quantity"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    card_print_id: Mapped[str] = mapped_column(ForeignKey("card_prints.id"), index=True)
    folder_id: Mapped[str | None] = mapped_column(
        ForeignKey("collection_folders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    condition: Mapped[str] = mapped_column(String(3))
    is_foil: Mapped[bool] = mapped_column(Boolean, default=False)
    acquired_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_fields: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    tags: Mapped[list["TagDB"]] = relationship(secondary=collection_entry_tags, lazy="selectin")

    def __repr__(self) -> str:
        return f"<CollectionEntryDB(print={self.card_print_id}, qty={self.quantity})>"


# =============================================================================
# DECKS
# =============================================================================


class DeckDB(Base):
    """
    A user's deck.

    `version` increases on every composition mutation and is compared
    against cached recommendations at serve time.
    """

    __tablename__ = "decks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(100))
    format: Mapped[str] = mapped_column(String(20))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    sections: Mapped[list["DeckSectionDB"]] = relationship(
        back_populates="deck",
        cascade="all, delete-orphan",
        order_by="DeckSectionDB.position",
        lazy="selectin",
    )
    tags: Mapped[list["TagDB"]] = relationship(secondary=deck_tags, lazy="selectin")

    def __repr__(self) -> str:
        return f"<DeckDB(name={self.name}, format={self.format})>"


class DeckSectionDB(Base):
    """A named zone of a deck with optional advisory validation rules."""

    __tablename__ = "deck_sections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deck_id: Mapped[str] = mapped_column(ForeignKey("decks.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(50))
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    validation_rules: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    deck: Mapped["DeckDB"] = relationship(back_populates="sections")
    cards: Mapped[list["DeckCardDB"]] = relationship(
        back_populates="section",
        cascade="all, delete-orphan",
        order_by="DeckCardDB.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<DeckSectionDB(name={self.name}, position={self.position})>"


class DeckCardDB(Base):
    """A quantity of one print placed in a deck section."""

    __tablename__ = "deck_cards"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_deck_card_quantity"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    section_id: Mapped[str] = mapped_column(
        ForeignKey("deck_sections.id", ondelete="CASCADE"), index=True
    )
    card_print_id: Mapped[str] = mapped_column(ForeignKey("card_prints.id"), index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    position: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    section: Mapped["DeckSectionDB"] = relationship(back_populates="cards")

    def __repr__(self) -> str:
        return f"<DeckCardDB(print={self.card_print_id}, qty={self.quantity})>"


# =============================================================================
# RECOMMENDATIONS
# =============================================================================


class DeckRecommendationDB(Base):
    """
    A time-bounded recommendation generated for one deck version.

    Gaps and suggestions are stored as JSON snapshots so the record stays
    auditable against the algorithm version that produced it.
    """

    __tablename__ = "deck_recommendations"
    __table_args__ = (
        CheckConstraint("expires_at > created_at", name="ck_recommendation_expiry"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    deck_id: Mapped[str] = mapped_column(ForeignKey("decks.id", ondelete="CASCADE"), index=True)
    deck_version: Mapped[int] = mapped_column(Integer, default=0)
    algorithm_version: Mapped[str] = mapped_column(String(50))

    identified_gaps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    rule_suggestions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    # Generative refinement (all null when not used or degraded)
    llm_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    llm_prompt_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    llm_completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    llm_cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    llm_suggestions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    llm_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    user_feedback: Mapped[str | None] = mapped_column(String(20), nullable=True)
    feedback_comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    def __repr__(self) -> str:
        return f"<DeckRecommendationDB(deck={self.deck_id}, version={self.deck_version})>"
