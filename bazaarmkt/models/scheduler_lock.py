from datetime import datetime
from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from bazaarmkt.database import Base
from bazaarmkt.db_types import TZDateTime


class SchedulerLock(Base):
    """Lease row that keeps a batch job from running twice at once."""
    __tablename__ = "scheduler_locks"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    owner: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    locked_until: Mapped[Optional[datetime]] = mapped_column(TZDateTime, nullable=True)
