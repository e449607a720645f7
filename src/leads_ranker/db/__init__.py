from leads_ranker.db.database import Base, make_engine, make_session_factory
from leads_ranker.db.store import LeadStore

__all__ = ["Base", "LeadStore", "make_engine", "make_session_factory"]
