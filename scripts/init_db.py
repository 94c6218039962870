#!/usr/bin/env python3
"""Create the scheduling tables (businesses, staff, schedules, appointments, ledgers)"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from salonbook import create_app
from salonbook.extensions import db

def init_database():
    app = create_app()
    with app.app_context():
        print(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")
        db.create_all()
        tables = ", ".join(sorted(db.metadata.tables))
        print(f"✅ Scheduling tables initialized successfully: {tables}")
        print(f"   Slot granularity {app.config['SLOT_GRANULARITY_MINUTES']} min, "
              f"store timeout {app.config['STORE_TIMEOUT_SECONDS']}s")

if __name__ == "__main__":
    init_database()
