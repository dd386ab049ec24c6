from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base


def get_engine(database_url: str, echo: bool = False):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # concurrent writers wait on the file lock instead of failing fast
        connect_args["timeout"] = 30
    return create_async_engine(database_url, echo=echo, future=True, connect_args=connect_args)


Base = declarative_base()


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )
