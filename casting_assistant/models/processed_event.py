from sqlalchemy import Column, DateTime, Text

from casting_assistant.database import Base


class ProcessedEvent(Base):
    __tablename__ = "processed_events"

    event_id = Column(Text, primary_key=True)
    processed_at = Column(DateTime(timezone=True), nullable=False, index=True)
