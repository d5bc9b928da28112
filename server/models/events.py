from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Text, func

from core.orm import Base


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_user_date", "user_id", "date"),
        Index("idx_events_user_deleted", "user_id", "deleted_at"),
    )

    id = Column(Text, primary_key=True)
    user_id = Column(Text, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    location = Column(Text)
    date = Column(Date, nullable=False)
    end_date = Column(Date)
    # 24-hour "HH:MM"; NULL means all-day
    time = Column(Text)
    ticket_url = Column(Text)
    price = Column(Text)
    image_url = Column(Text)
    google_event_id = Column(Text)
    deleted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
