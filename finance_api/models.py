import uuid
from datetime import datetime

from sqlalchemy import Column, String, Float, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class UserAccount(Base):
    """Credentials for sign-in. Shares its id with the matching UserProfile."""
    __tablename__ = "user_accounts"
    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    token_version = Column(Integer, nullable=False, default=0)  # bumped on logout
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserProfile(Base):
    __tablename__ = "user_profiles"
    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False)
    name = Column(String(255))
    monthly_income = Column(Float, nullable=False, default=0.0)
    fixed_bills = Column(Float, nullable=False, default=0.0)
    savings_goal = Column(Float, nullable=False, default=0.0)
    telegram_connected = Column(Boolean, nullable=False, default=False)
    telegram_username = Column(String(255))
    telegram_user_id = Column(String(64), index=True)


class Transaction(Base):
    __tablename__ = "transactions"
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    merchant = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False)  # always stored as a magnitude
    category = Column(String(32), nullable=False, default="Other")
    description = Column(Text, nullable=False, default="")
    date = Column(DateTime, nullable=False, default=datetime.utcnow)
    ai_categorized = Column(Boolean, nullable=False, default=False)
    receipt_image_url = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
