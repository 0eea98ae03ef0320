"""Seed the Big-Five questionnaire catalogue into the survey_items table."""
import asyncio
import sys
sys.path.insert(0, ".")

from sqlalchemy import select
from affinity_engine.database import async_session_factory
from affinity_engine.models.survey import SurveyItem


SURVEY_ITEMS = [
    {
        "content": "I prefer clearly defined tasks over ambiguous goals.",
        "dimension": "c",
        "reverse_keyed": False,
    },
    {
        "content": "I enjoy brainstorming new ideas with a group.",
        "dimension": "e",
        "reverse_keyed": False,
    },
    {
        # Adaptability item, scored against Neuroticism
        "content": "I am comfortable with frequent changes in priorities.",
        "dimension": "n",
        "reverse_keyed": True,
    },
    {
        "content": "I like trying unfamiliar ways of working, even when the old one works.",
        "dimension": "o",
        "reverse_keyed": False,
    },
    {
        "content": "I would rather reach consensus than win an argument.",
        "dimension": "a",
        "reverse_keyed": False,
    },
]


async def seed():
    async with async_session_factory() as session:
        for item in SURVEY_ITEMS:
            existing = await session.execute(
                select(SurveyItem).where(SurveyItem.content == item["content"])
            )
            if existing.scalar_one_or_none() is None:
                session.add(SurveyItem(**item))
                print(f"  Seeded item [{item['dimension'].upper()}]: {item['content']}")
            else:
                print(f"  Item already exists, skipping: {item['content']}")
        await session.commit()
    print("Done seeding survey items.")


if __name__ == "__main__":
    asyncio.run(seed())
