"""Table definitions for leads, their rankings, prompt versions and AI call costs."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, Text
from sqlalchemy.sql import func

from leads_ranker.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class LeadRow(Base):
    __tablename__ = "leads"

    id = Column(Text, primary_key=True, default=_uuid)
    account_name = Column(Text, nullable=False)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    job_title = Column(Text, nullable=False)
    account_domain = Column(Text, nullable=True)
    employee_range = Column(Text, nullable=True)
    industry = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RankingRow(Base):
    __tablename__ = "rankings"

    id = Column(Text, primary_key=True, default=_uuid)
    lead_id = Column(Text, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    rank = Column(Integer, nullable=True)  # 1-10, NULL = irrelevant
    relevance_score = Column(Float, nullable=True)
    reasoning = Column(Text, nullable=True)
    prompt_version = Column(Integer, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class AiCallLog(Base):
    __tablename__ = "ai_call_logs"

    id = Column(Text, primary_key=True, default=_uuid)
    provider = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    input_tokens = Column(Integer, nullable=False)
    output_tokens = Column(Integer, nullable=False)
    cost = Column(Float, nullable=False)  # USD
    duration_ms = Column(Integer, nullable=False)
    prompt_version = Column(Integer, default=1)
    batch_id = Column(Text, nullable=True)  # ranking batch or optimization run
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PromptRow(Base):
    __tablename__ = "prompts"

    id = Column(Text, primary_key=True, default=_uuid)
    version = Column(Integer, nullable=False, unique=True)
    content = Column(Text, nullable=False)
    eval_score = Column(Float, nullable=True)
    is_active = Column(Boolean, default=False)
    generation = Column(Integer, nullable=True)
    parent_version = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
