# db.py
"""
Incident and feedback storage using SQLAlchemy (SQLite by default).

Records are JSON documents keyed by a unique id ("INC-...", "FB-...",
"ADJ-..."). Rows are append-only: ``put`` never overwrites an existing id.
Reads against a database that was never initialised return empty results.
"""

import datetime
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .errors import StorageUnavailable

logger = logging.getLogger("db")

Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Record(Base):
    __tablename__ = "records"
    id = Column(String(64), primary_key=True)
    created_at = Column(DateTime, default=_utcnow, index=True)
    body = Column(Text, nullable=False)  # full JSON document


class IncidentStore:
    def __init__(self, database_url: str = "sqlite:///webwatcher.db"):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._initialised = False

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        self._initialised = True

    def put(self, record_id: str, record: Dict[str, Any]) -> None:
        """Insert a new record. Raises StorageUnavailable on any failure, including a duplicate id."""
        try:
            if not self._initialised:
                self.init_db()
            session = self.SessionLocal()
            try:
                session.add(Record(id=record_id, body=json.dumps(record)))
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise
            finally:
                session.close()
        except IntegrityError as e:
            raise StorageUnavailable(f"record {record_id} already exists", detail=str(e.orig)) from e
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not store {record_id}", detail=str(e)) from e

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        session = self.SessionLocal()
        try:
            row = session.query(Record).filter(Record.id == record_id).first()
        except OperationalError as e:
            logger.warning("Store not readable (%s); treating as empty", e.orig)
            return None
        finally:
            session.close()
        return json.loads(row.body) if row else None

    def exists(self, record_id: str) -> bool:
        return self.get(record_id) is not None

    def list(self, prefix: str = "", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Records whose id starts with ``prefix``, newest first."""
        session = self.SessionLocal()
        try:
            query = session.query(Record).filter(Record.id.startswith(prefix, autoescape=True)) \
                .order_by(Record.created_at.desc(), Record.id.desc())
            if limit is not None:
                query = query.limit(limit)
            rows = query.all()
        except OperationalError as e:
            logger.warning("Store not readable (%s); treating as empty", e.orig)
            return []
        finally:
            session.close()
        return [json.loads(r.body) for r in rows]
