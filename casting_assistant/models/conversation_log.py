from sqlalchemy import Column, DateTime, Float, Integer, Text

from casting_assistant.database import Base


class ConversationLog(Base):
    __tablename__ = "conversation_logs"

    # Autoincrement id doubles as append order for recent-context queries.
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False, index=True)
    event_id = Column(Text)
    user_text = Column(Text, nullable=False, default="")
    assistant_text = Column(Text, nullable=False, default="")
    intent = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)
    action = Column(Text, nullable=False)  # answer, clarify, escalate
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
