"""
Seed script - writes the demo records, providers and family members for one
account into the configured secure store (encrypted like any other write).

Run from the backend directory:
    python seed.py user-1234
    SECURE_STORE_BACKEND=redis python seed.py user-1234 --no-family
"""
import argparse
import asyncio

from magda.config import get_settings
from magda.services.container import build_services
from magda.services.demo_data import seed_demo_data


async def seed(account_id: str, include_family: bool = True):
    settings = get_settings()
    services = build_services(settings)
    try:
        counts = await seed_demo_data(services.repository, account_id, include_family=include_family)
    finally:
        await services.close()

    print("=" * 70)
    print("  DEMO DATA SEEDED")
    print("=" * 70)
    print()
    print(f"  Store:            {settings.SECURE_STORE_BACKEND}")
    print(f"  Account:          {account_id}")
    print(f"  Records:          {counts['records']}")
    print(f"  Providers:        {counts['providers']}")
    print(f"  Linked accounts:  {counts['linked_accounts']}")
    print()
    if not any(counts.values()):
        print("  Account already had data; nothing was added.")
        print()
    print("=" * 70)


def main():
    parser = argparse.ArgumentParser(description="Seed demo data for an account")
    parser.add_argument("account_id", help="Account id to seed (e.g. the signed-in user's id)")
    parser.add_argument("--no-family", action="store_true", help="Skip the demo family members")
    args = parser.parse_args()
    asyncio.run(seed(args.account_id, include_family=not args.no_family))


if __name__ == "__main__":
    main()
