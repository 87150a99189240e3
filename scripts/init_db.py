"""Create all fulfillment tables on DATABASE_URL."""
import asyncio
import os
import sys

sys.path.append(os.getcwd())

from fulfillment.database import close_db, init_db


async def main():
    print("Creating tables...")
    await init_db()
    await close_db()
    print("Done")


if __name__ == "__main__":
    asyncio.run(main())
