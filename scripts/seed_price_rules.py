"""
Seed the default price rules (route fares and fleet sizes).

Usage:
    python scripts/seed_price_rules.py

Existing rules are left untouched, so the script is safe to re-run.
"""
import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from routewise.config.database import Collections, DatabaseConfig
from routewise.config.settings import settings
from routewise.database.mongo_store import MongoDocumentStore
from routewise.models.price_rule import PriceRule

DEFAULT_RULES = [
    PriceRule(pickup="ABUAD", destination="Lagos", vehicle_type="4-seater", price=15000, vehicle_count=1),
    PriceRule(pickup="ABUAD", destination="Lagos", vehicle_type="7-seater", price=12000, vehicle_count=2),
    PriceRule(pickup="ABUAD", destination="Abuja", vehicle_type="5-seater", price=25000, vehicle_count=1),
    PriceRule(pickup="Lagos", destination="ABUAD", vehicle_type="4-seater", price=15000, vehicle_count=1),
]


async def main():
    print("🌱 Seeding price rules...")
    db_config = DatabaseConfig(settings)
    await db_config.connect_db()
    store = MongoDocumentStore(db_config)

    inserted = skipped = 0
    for rule in DEFAULT_RULES:
        if await store.get(Collections.PRICES, rule.id):
            print(f"⚠️ Price rule already exists: {rule.id}")
            skipped += 1
            continue
        await store.insert(Collections.PRICES, {"_id": rule.id, **rule.model_dump()})
        print(f"✅ Created price rule: {rule.id} (₦{rule.price:,.0f}, {rule.vehicle_count} vehicle(s))")
        inserted += 1

    print(f"    Inserted : {inserted}")
    print(f"    Skipped  : {skipped}")
    await db_config.close_db()


if __name__ == "__main__":
    asyncio.run(main())
