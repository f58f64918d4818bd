import asyncio
from datetime import date, time, timedelta
from decimal import Decimal

from cinema_booking.db.session import async_session as AsyncSessionLocal, init_db
from cinema_booking.models import (
    DiscountType,
    Movie,
    Promotion,
    PromotionStatus,
    Screen,
    SeatLayout,
    Showtime,
    ShowtimeStatus,
    Theatre,
    UserPoints,
)


async def seed():
    async with AsyncSessionLocal() as session:

        # ------------------------------------------------------------------------------------
        # 1. Create Theatre
        # ------------------------------------------------------------------------------------
        theatre = Theatre(
            name="Galaxy Cinema - Nguyen Du",
            city="Ho Chi Minh City",
            address="116 Nguyen Du, District 1",
        )
        session.add(theatre)
        await session.flush()  # get theatre.id

        # ------------------------------------------------------------------------------------
        # 2. Create Screens
        # ------------------------------------------------------------------------------------
        screen1 = Screen(
            name="Room 1",
            theatre_id=theatre.id,
            room_type="2D",
            total_seats=50,
        )
        screen2 = Screen(
            name="Room IMAX",
            theatre_id=theatre.id,
            room_type="IMAX",
            total_seats=40,
        )
        session.add_all([screen1, screen2])
        await session.flush()

        # ------------------------------------------------------------------------------------
        # 3. Create seat layouts (5 rows x 10 seats, 4 rows x 10 seats)
        # ------------------------------------------------------------------------------------
        def build_layout(screen, rows):
            layouts = []
            for row in rows:
                for num in range(1, 11):
                    seat_type = (
                        "Couple" if row == rows[-1] and screen.room_type != "IMAX" else
                        "VIP" if row in ["C", "D"] else
                        "Standard"
                    )
                    layouts.append(
                        SeatLayout(
                            screen_id=screen.id,
                            row_label=row,
                            column_number=num,
                            seat_type=seat_type,
                        )
                    )
            return layouts

        session.add_all(build_layout(screen1, ["A", "B", "C", "D", "E"]))
        session.add_all(build_layout(screen2, ["A", "B", "C", "D"]))
        await session.flush()

        # ------------------------------------------------------------------------------------
        # 4. Create Movies
        # ------------------------------------------------------------------------------------
        movie1 = Movie(
            title="Interstellar",
            description="A group of explorers travel through a wormhole in space.",
            duration_mins=169,
            language="English",
            rating="T13",
        )

        movie2 = Movie(
            title="Spirited Away",
            description="A girl wanders into a world of spirits.",
            duration_mins=125,
            language="Japanese",
            rating="P",
        )

        session.add_all([movie1, movie2])
        await session.flush()

        # ------------------------------------------------------------------------------------
        # 5. Create Showtimes (tomorrow)
        # ------------------------------------------------------------------------------------
        tomorrow = date.today() + timedelta(days=1)

        showtimes = [
            Showtime(
                movie_id=movie1.id,
                screen_id=screen1.id,
                show_date=tomorrow,
                start_time=time(10, 0),
                end_time=time(12, 49),
                capacity_available=screen1.total_seats,
                status=ShowtimeStatus.SCHEDULED,
            ),
            Showtime(
                movie_id=movie1.id,
                screen_id=screen1.id,
                show_date=tomorrow,
                start_time=time(19, 30),
                end_time=time(22, 19),
                capacity_available=screen1.total_seats,
                status=ShowtimeStatus.SCHEDULED,
            ),
            Showtime(
                movie_id=movie2.id,
                screen_id=screen2.id,
                show_date=tomorrow,
                start_time=time(14, 0),
                end_time=time(16, 5),
                capacity_available=screen2.total_seats,
                status=ShowtimeStatus.SCHEDULED,
            ),
        ]
        session.add_all(showtimes)

        # ------------------------------------------------------------------------------------
        # 6. Promotions and loyalty accounts
        # ------------------------------------------------------------------------------------
        session.add(Promotion(
            code="WELCOME10",
            title="10% off your first booking",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            minimum_purchase=Decimal("100000"),
            maximum_discount=Decimal("50000"),
            start_date=date.today(),
            end_date=date.today() + timedelta(days=90),
            usage_limit=1000,
            status=PromotionStatus.ACTIVE,
        ))
        session.add_all([
            UserPoints(user_id=1, balance=5000),
            UserPoints(user_id=2, balance=200),
        ])

        # ------------------------------------------------------------------------------------
        # 7. Commit everything
        # ------------------------------------------------------------------------------------
        await session.commit()
        print("Seed data created")


async def main():
    await init_db()
    await seed()


if __name__ == "__main__":
    asyncio.run(main())
