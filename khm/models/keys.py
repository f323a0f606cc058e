"""
Host key records and their flow associations.
"""
from datetime import datetime
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from khm.models.base import Base


class KeyRecord(Base):
    """A unique (host, public key) pair, shared by every flow that references it."""

    __tablename__ = "keys"
    __table_args__ = (
        UniqueConstraint("host", "key", name="unique_host_key"),
    )

    key_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deprecated: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=false(),
        nullable=False
    )

    # Relationships
    flows: Mapped[list["FlowAssociation"]] = relationship(
        back_populates="key_record",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<KeyRecord {self.key_id} host={self.host!r} deprecated={self.deprecated}>"


class FlowAssociation(Base):
    """Membership of a key record in a named flow."""

    __tablename__ = "flows"
    __table_args__ = (
        UniqueConstraint("name", "key_id", name="unique_flow_key"),
    )

    flow_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    key_id: Mapped[int] = mapped_column(
        ForeignKey("keys.key_id", ondelete="CASCADE"),
        nullable=False
    )

    # Relationships
    key_record: Mapped["KeyRecord"] = relationship(back_populates="flows")
