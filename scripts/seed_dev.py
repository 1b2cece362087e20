from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from raffledraw.auth import Caller, issue_api_token
from raffledraw.db.engine import make_engine
from raffledraw.lifecycle import create_raffle
from raffledraw.models import ROLE_ADMIN, Base, RaffleStatus, User
from raffledraw.roster import add_prize, bulk_import, parse_bulk_text


DEMO_PARTICIPANTS = """\
Alice Tanaka, alice@example.com, 090-1111-2222, Engineer
Bob Sato, bob@example.com, , Designer
Carol Suzuki, carol@example.com, 090-3333-4444, Manager
Dan Ito, , , Intern
Erin Kato, erin@example.com, 090-5555-6666, Director
"""


def main() -> None:
    """Seed the development database with sample data."""
    engine = make_engine()

    # Drop and recreate all tables. SQLite struggles with cyclic foreign-key
    # dependencies during DROP, so temporarily disable foreign key checks to
    # ensure a clean reset of the schema.
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)

    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        admin = User(username="admin", email="admin@example.com", role=ROLE_ADMIN)
        organizer = User(
            username="organizer",
            email="organizer@example.com",
            first_name="Olivia",
            last_name="Organizer",
        )
        session.add_all([admin, organizer])
        session.flush()

        admin_token = issue_api_token(session, admin)
        organizer_token = issue_api_token(session, organizer)
        caller = Caller.for_user(organizer)

        raffle = create_raffle(
            session,
            caller,
            title="Year-End Party Raffle",
            description="Prizes for the annual staff party.",
            draw_date=now + timedelta(days=7),
            max_participants=100,
            status=RaffleStatus.ACTIVE,
        )
        add_prize(session, caller, raffle.id, name="Grand Prize", position=1, value="500.00")
        add_prize(session, caller, raffle.id, name="Second Prize", position=2, value="200.00")
        add_prize(
            session,
            caller,
            raffle.id,
            name="Third Prize",
            position=3,
            description="Gift card",
            value="50",
        )
        bulk_import(session, caller, raffle.id, parse_bulk_text(DEMO_PARTICIPANTS))

    print("Development database seeded.")
    print(f"  admin token:     {admin_token}")
    print(f"  organizer token: {organizer_token}")


if __name__ == "__main__":
    main()
