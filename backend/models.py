from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text
from datetime import datetime
from database import Base

class Restaurant(Base):
    __tablename__ = "restaurants"
    id = Column(Integer, primary_key=True)
    name = Column(String(200))
    phone = Column(String(50), index=True)
    active = Column(Boolean, default=True)
    cuisine = Column(String(100), nullable=True)
    system_prompt = Column(Text, nullable=True)
    greeting_message = Column(Text, nullable=True)
    voice = Column(String(50), nullable=True)


class MenuItem(Base):
    __tablename__ = "menu_items"
    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, index=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, default=0)
    category = Column(String(100), nullable=True)
    available = Column(Boolean, default=True)
    # JSON encoded list of strings
    modifications = Column(Text, nullable=True)


class CallLog(Base):
    __tablename__ = "call_logs"
    id = Column(Integer, primary_key=True)
    call_sid = Column(String(100), index=True)
    restaurant_id = Column(Integer, index=True, nullable=True)
    restaurant = Column(String(200))
    caller = Column(String(50))
    called = Column(String(50))
    duration = Column(Integer, default=0)
    status = Column(String(50))
    type = Column(String(50), nullable=True)
    created = Column(DateTime, default=datetime.utcnow)
    ended_at = Column(DateTime, nullable=True)


class Transcript(Base):
    __tablename__ = "transcripts"
    id = Column(Integer, primary_key=True)
    call_log_id = Column(Integer, index=True, nullable=False)
    role = Column(String(20))
    text = Column(Text)
    timestamp = Column(DateTime, default=datetime.utcnow)


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    call_log_id = Column(Integer, index=True, nullable=True)
    restaurant_id = Column(Integer, index=True, nullable=True)
    # JSON encoded list of order lines
    items = Column(Text)
    total = Column(Float, default=0)
    delivery_address = Column(String(300), nullable=True)
    status = Column(String(50), default="confirmed")
    created = Column(DateTime, default=datetime.utcnow)


class Reservation(Base):
    __tablename__ = "reservations"
    id = Column(Integer, primary_key=True)
    call_log_id = Column(Integer, index=True, nullable=True)
    restaurant_id = Column(Integer, index=True, nullable=True)
    guest_name = Column(String(200))
    date = Column(String(20))
    time = Column(String(20))
    guest_count = Column(Integer, default=1)
    special_requests = Column(Text, nullable=True)
    status = Column(String(50), default="confirmed")
    created = Column(DateTime, default=datetime.utcnow)
