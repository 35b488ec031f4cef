"""Lookup cache storage for the geocoding distance collaborator.

Invoices and orders live in memory only. What is stored here is what is
expensive to look up again: the coordinates of each address and the
measured length of each chain of stops. The store defaults to an
in-memory SQLite database that lasts as long as its manager; set
DISTANCE_CACHE_DB to keep it across runs.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base of the cache tables."""

    pass


# ============================================================================
# Cache Tables
# ============================================================================


class GeocodedAddressModel(Base):
    """Coordinates of one normalized address."""

    __tablename__ = "geocoded_addresses"

    address_key = Column(String(32), primary_key=True)
    address = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    confidence = Column(String, default="medium")
    geocoded_at = Column(DateTime(timezone=True), default=_utcnow)


class RouteDistanceModel(Base):
    """Measured length of one chain of stops at one road factor."""

    __tablename__ = "route_distances"

    route_key = Column(String(32), primary_key=True)
    waypoints = Column(Text, nullable=False)
    stop_count = Column(Integer, nullable=False)
    miles = Column(Float, nullable=False)
    road_factor = Column(Float, nullable=False, default=1.0)
    measured_at = Column(DateTime(timezone=True), default=_utcnow)


# ============================================================================
# Cache Database
# ============================================================================


class DatabaseManager:
    """Owns the engine and session factory of the lookup cache."""

    def __init__(self, db_path: Optional[str | Path] = None):
        """Open the cache database.

        Args:
            db_path: SQLite file to use. None keeps the cache in memory,
                shared by every session of this manager.
        """
        self.db_path = Path(db_path) if db_path is not None else None
        if self.db_path is None:
            self.engine = create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                connect_args={"check_same_thread": False},
            )
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        return self.SessionLocal()

    def cache_stats(self) -> dict[str, int]:
        """Number of cached addresses and route distances."""
        with self.get_session() as session:
            return {
                "addresses": session.query(GeocodedAddressModel).count(),
                "routes": session.query(RouteDistanceModel).count(),
            }

    def clear_cache(self) -> dict[str, int]:
        """Delete every cached lookup.

        Returns:
            Number of rows deleted per table.
        """
        with self.get_session() as session:
            deleted = {
                "addresses": session.query(GeocodedAddressModel).delete(),
                "routes": session.query(RouteDistanceModel).delete(),
            }
            session.commit()
        return deleted


def get_database_manager(db_path: Optional[str | Path] = None) -> DatabaseManager:
    """Open the lookup cache with its tables created.

    Args:
        db_path: Optional SQLite file. Defaults to an in-memory database.

    Returns:
        A ready-to-use DatabaseManager.
    """
    db = DatabaseManager(db_path)
    db.create_tables()
    return db
