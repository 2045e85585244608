"""
Database initialization script
Run this to create tables and seed initial data
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from app.core.database import engine, Base, SessionLocal
from app.main import seed_reference_data
import app.models  # noqa: F401


def init_db():
    """Initialize database with tables"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("✓ Tables created successfully")


def seed_data():
    """Seed rate types and the admin user"""
    db = SessionLocal()
    try:
        print("\nSeeding initial data...")
        seed_reference_data(db)
        print("✓ Rate types and admin user ready")
    except Exception as e:
        print(f"✗ Error seeding data: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    print("=" * 60)
    print("Field Verification CRM - Commission Engine Database Initialization")
    print("=" * 60)

    init_db()
    seed_data()

    print("\n" + "=" * 60)
    print("Initialization complete!")
    print("=" * 60)
    print("\nYou can now access:")
    print("  - API: http://localhost:8000")
    print("  - API Docs: http://localhost:8000/docs")
    print("=" * 60)
