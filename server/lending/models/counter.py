"""Named sequence counter model."""

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class Counter(Base):
    """A named, monotonically increasing sequence."""

    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("seq >= 0", name="ck_counter_seq_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Counter(name='{self.name}', seq={self.seq})>"
