from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow


class Category(Base):
    __tablename__ = "categories"

    id          = Column(Integer, primary_key=True, index=True)
    name        = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    createdAt   = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    equipment = relationship("Equipment", back_populates="category")

    def __repr__(self):
        return f"<Category id={self.id} name={self.name}>"
