"""Key-value record holding one serialized UserData aggregate."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Text, func

from habitloop.db.base import Base
from habitloop.db.types import JSONBCompat


class UserDataRecord(Base):
    __tablename__ = "user_data_records"

    key = Column(Text, primary_key=True)
    payload = Column(JSONBCompat, nullable=False, default=dict)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
