# scripts/seed_demo.py
"""
Create a demo account with credits, a default brand and a few products

Usage:
    python scripts/seed_demo.py
    python scripts/seed_demo.py --username demo --password changeme123 --credits 50
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import settings
from app.core.security import hash_password
from app.services.store import StudioStore

DEMO_PRODUCTS = [
    ("Wax print tote bag", "https://example.com/products/tote.jpg"),
    ("Leather sandals", "https://example.com/products/sandals.jpg"),
    ("Boubou dress", "https://example.com/products/boubou.jpg"),
]


async def seed(username: str, password: str, credits: int) -> None:
    store = StudioStore(str(settings.database_path))
    await store.connect()
    try:
        if await store.get_user_by_username(username):
            print(f"User {username} already exists, nothing to do")
            return

        user = await store.create_user(username, hash_password(password), credit_units=credits)
        brand = await store.create_brand(
            user["id"], "Demo Brand", is_default=True, voice="Warm, proud and playful"
        )
        print(f"Created user {username} ({user['id']}) with {credits} credits")

        for name, image_url in DEMO_PRODUCTS:
            product = await store.create_product(image_url, name=name, brand_id=brand["id"])
            print(f"  product {product['id']}: {name}")
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Seed a demo account")
    parser.add_argument("--username", default="demo")
    parser.add_argument("--password", default="changeme123")
    parser.add_argument("--credits", type=int, default=50)
    args = parser.parse_args()

    asyncio.run(seed(args.username, args.password, args.credits))


if __name__ == "__main__":
    main()
