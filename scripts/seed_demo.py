#!/usr/bin/env python3
"""
Seed a demo business with staff, weekly schedules and services.
Run after init_db.py to get something bookable on a fresh database.
"""

import sys
from datetime import time
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from salonbook import create_app
from salonbook.context import issue_token
from salonbook.extensions import db
from salonbook.models import Business, Client, Schedule, Service, Staff

DEMO_STAFF = ["Alex Rivera", "Jordan Lee"]

DEMO_SERVICES = [
    {"name": "Haircut", "duration_minutes": 45, "pre_buffer_minutes": 0, "post_buffer_minutes": 15, "price_cents": 3500},
    {"name": "Beard Trim", "duration_minutes": 30, "pre_buffer_minutes": 0, "post_buffer_minutes": 5, "price_cents": 2000},
    {"name": "Color", "duration_minutes": 90, "pre_buffer_minutes": 10, "post_buffer_minutes": 20, "price_cents": 9000},
]


def seed_demo():
    """Create one business with two staff members working Monday to Saturday."""
    app = create_app()

    with app.app_context():
        if Business.query.filter_by(name="Demo Salon").first():
            print("⏭️  Demo Salon already exists, nothing to do")
            return

        print("🔄 Seeding demo business...")
        business = Business(name="Demo Salon", timezone="America/New_York")
        db.session.add(business)
        db.session.flush()

        for name in DEMO_STAFF:
            staff = Staff(business_id=business.business_id, display_name=name)
            db.session.add(staff)
            db.session.flush()
            for day_of_week in range(1, 7):  # Monday..Saturday
                db.session.add(Schedule(
                    staff_id=staff.staff_id,
                    day_of_week=day_of_week,
                    start_time=time(9, 0),
                    end_time=time(17, 0),
                    break_start=time(12, 0),
                    break_end=time(12, 30),
                ))
            print(f"✅ Added staff member {name}")

        for service in DEMO_SERVICES:
            db.session.add(Service(business_id=business.business_id, **service))
            print(f"✅ Added service {service['name']}")

        db.session.add(Client(business_id=business.business_id, name="Demo Client", email="client@example.com"))
        db.session.commit()

        print(f"\n✨ Demo Salon ready (business_id={business.business_id})")
        # Scoped to the demo business; send as "Authorization: Bearer <token>"
        print(f"🔑 Front desk token: {issue_token(user_id=1, business_id=business.business_id)}")


if __name__ == "__main__":
    seed_demo()
