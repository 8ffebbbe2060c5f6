# src/libdesk/models/rate_limit.py
"""Persistent admission counters."""

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from libdesk.db.session import Base


class RateLimit(Base):
    """Hit counter for one identity bucket within the current window.

    Shared by every server process, so counters survive restarts and are
    consistent behind a load balancer.
    """

    __tablename__ = "rate_limits"

    key_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Epoch milliseconds at which the current window ends.
    reset_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
