"""
SQLAlchemy ORM Models.

One generic table backs the key/value storage collaborator. Chain
records live inside shard documents; the table knows nothing about
hashing or sharding.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from logibrew.db.compat import JSONType
from logibrew.db.engine import Base


class ChainEntryModel(Base):
    """
    Versioned key/value row.

    version increments on every write and is the compare token for
    conditional puts.
    """

    __tablename__ = "chain_kv"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[dict] = mapped_column(JSONType(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
