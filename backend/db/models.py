from datetime import datetime
from sqlalchemy import Column, Integer, Text, DateTime
from db.database import Base


class UserDocument(Base):
    """One JSON event-log document per user."""

    __tablename__ = "user_documents"

    user_id = Column(Text, primary_key=True)
    payload = Column(Text, nullable=False, default="{}")  # JSON object
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
