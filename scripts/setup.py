#!/usr/bin/env python3
"""Setup script for the equipment lending API."""

import asyncio
import logging
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from lending.core.database import async_session_factory
from lending.models import Equipment, EquipmentCategory, EquipmentCondition

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_EQUIPMENT = [
    ("Basketball", EquipmentCategory.SPORTS, EquipmentCondition.GOOD, 10, "Official size 7 indoor/outdoor ball"),
    ("Football", EquipmentCategory.SPORTS, EquipmentCondition.GOOD, 8, "Size 5 match football"),
    ("Microscope", EquipmentCategory.LAB, EquipmentCondition.EXCELLENT, 5, "Compound microscope, 1000x"),
    ("Digital Multimeter", EquipmentCategory.ELECTRONICS, EquipmentCondition.GOOD, 12, None),
    ("Raspberry Pi Kit", EquipmentCategory.ELECTRONICS, EquipmentCondition.EXCELLENT, 6, "Board, case and power supply"),
    ("Acoustic Guitar", EquipmentCategory.MUSICAL, EquipmentCondition.FAIR, 3, None),
    ("Projector", EquipmentCategory.OTHER, EquipmentCondition.GOOD, 2, "1080p portable projector"),
]


def setup_database():
    """Setup the database with the initial schema."""
    logger.info("Setting up database...")

    try:
        alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
        alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

        logger.info("Running database migrations...")
        command.upgrade(alembic_cfg, "head")
        logger.info("Database migrations completed")

    except Exception as e:
        logger.error(f"Database setup failed: {e}")
        raise


async def create_sample_data():
    """Create a demo equipment catalogue."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        try:
            existing = await db.scalar(select(func.count()).select_from(Equipment))
            if existing:
                logger.info("Sample data already exists, skipping...")
                return

            for name, category, condition, quantity, description in SAMPLE_EQUIPMENT:
                db.add(Equipment(
                    name=name,
                    category=category.value,
                    condition=condition.value,
                    quantity=quantity,
                    available=quantity,
                    description=description,
                ))

            await db.commit()
            logger.info(f"Created {len(SAMPLE_EQUIPMENT)} equipment records")

        except Exception as e:
            await db.rollback()
            logger.error(f"Failed to create sample data: {e}")
            raise


def main():
    """Main setup function."""
    logger.info("Starting equipment lending API setup...")

    # Migrations run their own event loop
    setup_database()

    asyncio.run(create_sample_data())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn lending.main:app --reload")


if __name__ == "__main__":
    main()
