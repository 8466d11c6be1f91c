"""
Database initialization script
Run this to create tables and seed demo data
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from commission_engine.core.database import engine, Base
from commission_engine import models  # noqa: F401
from commission_engine.main import seed_demo_data


def init_db():
    """Initialize database with tables"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("✓ Tables created successfully")


if __name__ == "__main__":
    print("=" * 50)
    print("Commission Engine - Database Initialization")
    print("=" * 50)

    init_db()
    print("\nSeeding demo data...")
    seed_demo_data()

    print("\n" + "=" * 50)
    print("✓ Database initialization complete!")
    print("=" * 50)
    print("\nDemo employees:")
    print("  Admin: admin@courier.example (X-User-Id: see employees table)")
    print("  Sales: sales@courier.example")
