from datetime import time

from app.db.models import AvailabilityRule, Host
from app.db.session import SessionLocal


WEEKDAYS = (1, 2, 3, 4, 5)


def seed_demo_host() -> None:
    session = SessionLocal()
    try:
        existing = session.query(Host).filter(Host.external_id == "demo").first()
        if existing is not None:
            print(f"Demo host already exists with id={existing.id}")
            return

        demo = Host(
            external_id="demo",
            name="Demo Consultant",
            email="demo.host@example.com",
            timezone="America/New_York",
            booking_horizon_days=30,
        )
        session.add(demo)
        session.flush()

        for day_of_week in WEEKDAYS:
            session.add(
                AvailabilityRule(
                    host_id=demo.id,
                    day_of_week=day_of_week,
                    start_time=time(9, 0),
                    end_time=time(17, 0),
                    buffer_minutes=15,
                )
            )
        session.commit()
        session.refresh(demo)
        print(f"Created demo host with id={demo.id}")
    finally:
        session.close()


if __name__ == "__main__":
    seed_demo_host()
