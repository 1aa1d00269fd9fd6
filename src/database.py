"""
CEA Salesperson Analytics Database Models

SQLAlchemy models for the PostgreSQL store behind the dashboard.
One table per aggregate, plus the salesperson directory, the per-salesperson
record lists and the append-only movement log.

Usage:
    from src.database import get_engine, SalespersonInfoRow, create_tables

    # Create tables
    create_tables()
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    DateTime,
    Index,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from config.settings import DATABASE_URL, LEADERBOARD_PROCEDURE, SQL_DIR

# Base class for models
Base = declarative_base()

_engine: Optional[Engine] = None


class ConfigurationError(RuntimeError):
    """Raised when required connection settings or secrets are missing."""


# =============================================================================
# Database Configuration
# =============================================================================

def get_engine(database_url: Optional[str] = None) -> Engine:
    """
    Return the shared engine, creating it on first use.

    Passing an explicit URL always builds a fresh engine.
    """
    global _engine

    if database_url:
        return create_engine(database_url, echo=False, future=True)

    if _engine is None:
        if not DATABASE_URL:
            raise ConfigurationError("Missing database credentials: set DATABASE_URL")
        _engine = create_engine(DATABASE_URL, echo=False, future=True)
    return _engine


# =============================================================================
# Aggregate Tables
# =============================================================================

class SyncMetadata(Base):
    """Singleton row describing the last aggregation run."""
    __tablename__ = "metadata"

    id = Column(Integer, primary_key=True)  # always 1
    last_sync = Column(DateTime, nullable=False)
    total_records = Column(Integer, nullable=False)
    unique_salespersons = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<SyncMetadata(last_sync={self.last_sync}, total_records={self.total_records:,})>"


class TransactionsByYear(Base):
    __tablename__ = "transactions_by_year"

    year = Column(String(4), primary_key=True)
    count = Column(Integer, nullable=False)


class SalespersonsByYear(Base):
    __tablename__ = "salespersons_by_year"

    year = Column(String(4), primary_key=True)
    count = Column(Integer, nullable=False)


class TransactionTypeByYear(Base):
    __tablename__ = "transaction_type_by_year"

    year = Column(String(4), primary_key=True)
    transaction_type = Column(String(100), primary_key=True)
    count = Column(Integer, nullable=False)


class PropertyTypeByYear(Base):
    __tablename__ = "property_type_by_year"

    year = Column(String(4), primary_key=True)
    property_type = Column(String(100), primary_key=True)
    count = Column(Integer, nullable=False)


# =============================================================================
# Salesperson Tables
# =============================================================================

class SalespersonInfoRow(Base):
    """
    Current registration and agency per salesperson.

    Replaced wholesale by every directory sync; read by the movement sync as
    the "before" state.
    """
    __tablename__ = "salesperson_info"

    reg_num = Column(String(20), primary_key=True)
    name = Column(String(255))
    registration_start_date = Column(String(20))
    registration_end_date = Column(String(20))
    estate_agent_name = Column(String(255), index=True)
    estate_agent_license_no = Column(String(50))

    def __repr__(self):
        return f"<SalespersonInfoRow(reg_num={self.reg_num}, agent={self.estate_agent_name})>"


class SalespersonMonthlyRow(Base):
    """One salesperson's transaction count for one "YYYY-MM"."""
    __tablename__ = "salesperson_monthly"

    reg_num = Column(String(20), primary_key=True)
    month_year = Column(String(7), primary_key=True)
    name = Column(String(255))
    count = Column(Integer, nullable=False)

    __table_args__ = (
        Index('ix_salesperson_monthly_month_year', 'month_year'),
    )


class SalespersonRecordRow(Base):
    """Individual transaction kept for the salesperson lookup page."""
    __tablename__ = "salesperson_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reg_num = Column(String(20), nullable=False, index=True)
    name = Column(String(255))
    transaction_date = Column(String(20))
    property_type = Column(String(100))
    transaction_type = Column(String(100))
    represented = Column(String(50))
    town = Column(String(100))
    district = Column(String(50))
    general_location = Column(String(255))


class MovementRow(Base):
    """
    Detected change of estate agent. Append-only.
    """
    __tablename__ = "salesperson_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    reg_num = Column(String(20), nullable=False, index=True)
    salesperson_name = Column(String(255))
    old_estate_agent_name = Column(String(255))
    new_estate_agent_name = Column(String(255))
    old_estate_agent_license_no = Column(String(50))
    new_estate_agent_license_no = Column(String(50))

    def __repr__(self):
        return (
            f"<MovementRow(reg_num={self.reg_num}, "
            f"{self.old_estate_agent_name} -> {self.new_estate_agent_name})>"
        )


# =============================================================================
# Helper Functions
# =============================================================================

def create_tables(engine: Optional[Engine] = None):
    """Create all tables in the database."""
    Base.metadata.create_all(bind=engine or get_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all tables (use with caution!)."""
    Base.metadata.drop_all(bind=engine or get_engine())


def create_procedures(engine: Optional[Engine] = None) -> bool:
    """
    Install the server-side leaderboard function.

    Only PostgreSQL supports it; returns False for other dialects.
    """
    engine = engine or get_engine()
    if engine.dialect.name != "postgresql":
        return False

    sql = (SQL_DIR / f"{LEADERBOARD_PROCEDURE}.sql").read_text(encoding="utf-8")
    with engine.begin() as conn:
        conn.execute(text(sql))
    return True


def test_connection(engine: Optional[Engine] = None) -> bool:
    """Test database connection."""
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
            print("✅ Database connection successful")
            return True
    except Exception as e:
        print(f"❌ Database connection failed: {e}")
        return False


# =============================================================================
# CLI
# =============================================================================

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Database management")
    parser.add_argument("command", choices=["create", "drop", "procedures", "test"])

    args = parser.parse_args()

    if args.command == "create":
        create_tables()
        print("✅ Database tables created successfully")
    elif args.command == "drop":
        confirm = input("Are you sure you want to drop all tables? (yes/no): ")
        if confirm.lower() == "yes":
            drop_tables()
            print("⚠️ All tables dropped")
        else:
            print("Cancelled")
    elif args.command == "procedures":
        if create_procedures():
            print(f"✅ Installed {LEADERBOARD_PROCEDURE}()")
        else:
            print("Stored functions are only supported on PostgreSQL")
    elif args.command == "test":
        test_connection()
