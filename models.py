# models.py

from sqlalchemy import BigInteger, Column, Float, Integer, String, Text
from database import Base

class Job(Base):
    """One diary-to-reel pipeline run."""

    __tablename__ = "jobs"

    id = Column(String(32), primary_key=True, index=True)
    created_at = Column(BigInteger, nullable=False)  # epoch ms
    status = Column(String(32), nullable=False, default="queued")
    progress = Column(Float, nullable=False, default=0.0)
    message = Column(String, nullable=False, default="Queued")
    error = Column(Text, nullable=True)
    total_shots = Column(Integer, nullable=True)
    completed_shots = Column(Integer, nullable=True)
    output_url = Column(String, nullable=True)
