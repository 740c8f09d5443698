"""Database utilities and ORM models."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import DateTime, Float, Integer, String, create_engine, desc
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .measurements.models import Measurement

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class MeasurementRecord(Base):
    __tablename__ = "measurements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True)
    interface: Mapped[str] = mapped_column(String(128))
    download_mbps: Mapped[float] = mapped_column(Float)
    upload_mbps: Mapped[float] = mapped_column(Float)
    ping_avg_ms: Mapped[float] = mapped_column(Float)
    jitter_ms: Mapped[float] = mapped_column(Float)
    packet_loss_percent: Mapped[float] = mapped_column(Float)
    http_response_ms: Mapped[float] = mapped_column(Float)

    def to_measurement(self) -> Measurement:
        return Measurement(
            timestamp=self.timestamp,
            interface=self.interface,
            download_mbps=self.download_mbps,
            upload_mbps=self.upload_mbps,
            ping_avg_ms=self.ping_avg_ms,
            jitter_ms=self.jitter_ms,
            packet_loss_percent=self.packet_loss_percent,
            http_response_ms=self.http_response_ms,
        )


def init_db(data_dir: Path) -> sessionmaker:
    db_path = data_dir / "metrics.db"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, future=True, expire_on_commit=False)


@contextmanager
def get_session(Session: sessionmaker) -> Iterator:
    session = Session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class MeasurementStore:
    """SQLite-backed archive of finished measurements."""

    def __init__(self, session_factory: sessionmaker):
        self.Session = session_factory

    def persist(self, measurement: Measurement) -> None:
        with get_session(self.Session) as session:
            session.add(
                MeasurementRecord(
                    timestamp=measurement.timestamp,
                    interface=measurement.interface,
                    download_mbps=measurement.download_mbps,
                    upload_mbps=measurement.upload_mbps,
                    ping_avg_ms=measurement.ping_avg_ms,
                    jitter_ms=measurement.jitter_ms,
                    packet_loss_percent=measurement.packet_loss_percent,
                    http_response_ms=measurement.http_response_ms,
                )
            )
        LOGGER.debug("Stored measurement at %s", measurement.timestamp.isoformat())

    def get_measurements(
        self,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Measurement]:
        with get_session(self.Session) as session:
            query = session.query(MeasurementRecord).order_by(desc(MeasurementRecord.timestamp))
            if start:
                query = query.filter(MeasurementRecord.timestamp >= start)
            if end:
                query = query.filter(MeasurementRecord.timestamp <= end)
            if limit:
                query = query.limit(limit)
            rows = query.all()
            return [row.to_measurement() for row in reversed(rows)]
