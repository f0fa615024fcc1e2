# scripts/init_db.py
import sys
from pathlib import Path

from sqlalchemy import text

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from app.config.settings import get_settings
from app.infrastructure.database.session import create_engine, init_schema


async def main():
    settings = get_settings()
    engine = create_engine(settings.database_url)
    try:
        async with engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            print("DB Connected:", result.scalar())
        await init_schema(engine)
        print("Schema ready:", settings.database_url)
    finally:
        await engine.dispose()


asyncio.run(main())
