"""Populate the database with demo categories, products and bundles asynchronously."""

import asyncio
from decimal import Decimal

from sqlalchemy import delete

from server.db.base_class import Base
from server.db.session import DATABASE_URL, SessionLocal, engine
from server.models import (
    Bundle,
    BundleImage,
    BundleVideo,
    Category,
    Order,
    OrderItem,
    Product,
    Subscription,
)

print(f"🗂 Using database: {DATABASE_URL}")


async def main() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:
        print("🧹 Clearing catalog tables...")
        for model in (Subscription, OrderItem, Order, BundleImage, BundleVideo, Bundle, Product, Category):
            await session.execute(delete(model))

        print("➕ Adding categories and products...")
        physical = Category(name="Physical Products", description="Physical items that need shipping")
        digital = Category(name="Digital Products", description="Digital content and downloads")
        session.add_all([physical, digital])
        await session.flush()

        session.add_all(
            [
                Product(
                    name="Premium Photo Set",
                    description="Exclusive photo collection",
                    price=Decimal("29.99"),
                    image="https://images.unsplash.com/photo-1581291518857-4e27b48ff24e",
                    category_id=digital.id,
                ),
                Product(
                    name="Signed Print",
                    description="Autographed physical print",
                    price=Decimal("49.99"),
                    image="https://images.unsplash.com/photo-1523206489230-c012c64b2b48",
                    category_id=physical.id,
                ),
            ]
        )

        print("📦 Adding bundles...")
        session.add_all(
            [
                Bundle(
                    name="Ultimate Collection",
                    description="Complete content bundle with exclusive materials",
                    price=Decimal("99.99"),
                    image="https://images.unsplash.com/photo-1549921296-3a6b7a249e08",
                    exclusive=True,
                    images=[
                        BundleImage(url=f"https://cdn.example.com/ultimate/photo-{i}.jpg", position=i)
                        for i in range(1, 4)
                    ],
                    videos=[BundleVideo(url="https://cdn.example.com/ultimate/video-1.mp4", position=1)],
                ),
                Bundle(
                    name="Starter Pack",
                    description="Perfect for newcomers",
                    price=Decimal("19.99"),
                    image="https://images.unsplash.com/photo-1506806732259-39c2d0268443",
                    exclusive=False,
                    images=[BundleImage(url="https://cdn.example.com/starter/photo-1.jpg", position=1)],
                ),
            ]
        )
        await session.commit()

        print("✅ Database seeded successfully.")


if __name__ == "__main__":
    asyncio.run(main())
