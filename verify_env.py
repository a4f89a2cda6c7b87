import asyncio
import os

from dotenv import load_dotenv
import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine

from medbook.core.database import resolve_async_database_url

load_dotenv()

DB_LABELS = {
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite (tests)",
}

HEALTH_QUERIES = {
    "postgresql": "SELECT version();",
    "mysql": "SELECT VERSION();",
}


async def verify_database():
    print("-" * 30)
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("❌ DATABASE_URL is not set")
        return False

    try:
        async_url = resolve_async_database_url(db_url)
        url = make_url(async_url)
    except Exception as exc:  # noqa: BLE001 - surface clear setup errors
        print(f"❌ Unsupported database configuration: {exc}")
        return False

    backend = url.get_backend_name()
    label = DB_LABELS.get(backend, backend)
    print(f"🔍 Checking {label} connection...")
    print(f"ℹ️  DSN: {url.render_as_string(hide_password=True)}")

    query = HEALTH_QUERIES.get(backend, "SELECT 1")

    try:
        engine = create_async_engine(async_url, echo=False)
        async with engine.connect() as conn:
            result = await conn.execute(text(query))
            print(f"✅ {label} reachable, returned: {result.scalar()}")
        await engine.dispose()
        return True
    except Exception as e:  # noqa: BLE001 - surface connection failure
        print(f"❌ {label} connection failed: {e}")
        return False


async def verify_redis():
    print("-" * 30)
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        print("ℹ️  REDIS_URL not set; provider locks stay in-process (single API worker only)")
        return True

    print("🔍 Checking Redis connection (provider locks)...")
    print(f"ℹ️  REDIS_URL: {redis_url.split('@')[-1]}")  # hide credentials

    try:
        r = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        if await r.ping():
            print("✅ Redis reachable (PING returned PONG)")
        await r.aclose()
        return True
    except Exception as e:  # noqa: BLE001 - surface connection failure
        print(f"❌ Redis connection failed: {e}")
        return False


async def main():
    print("🚀 Verifying MedBook environment...")

    db_ok = await verify_database()
    redis_ok = await verify_redis()

    print("-" * 30)
    if db_ok and redis_ok:
        print("🎉 All configured services are reachable.")
    else:
        print("⚠️  Connection problems found; check .env and running containers.")


if __name__ == "__main__":
    asyncio.run(main())
