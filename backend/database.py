from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from models import Base, KnowledgeBase
from sqlalchemy import select

from config import DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        result = await session.execute(select(KnowledgeBase).limit(1))
        if result.scalar_one_or_none() is None:
            session.add_all([
                KnowledgeBase(
                    title="Interview process",
                    content=(
                        "Interviews are conducted by Gennie, an AI recruiter. A screening call lasts "
                        "about fifteen minutes and is followed by a technical or behavioral round. "
                        "Candidates hear back within five business days after the final interview."
                    ),
                ),
                KnowledgeBase(
                    title="Working at the company",
                    content=(
                        "The team works hybrid with two office days per week. Benefits include health "
                        "insurance, a yearly learning budget and flexible hours. Visa sponsorship is "
                        "decided case by case for senior roles."
                    ),
                ),
            ])
            await session.commit()


async def get_db():
    async with async_session() as session:
        yield session
