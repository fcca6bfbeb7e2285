from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from healthpath.core.config import settings

engine_kwargs = {"pool_pre_ping": True, "echo": False}
if settings.SQLALCHEMY_DATABASE_URI.startswith("postgresql"):
    engine_kwargs.update(
        pool_size=10,
        max_overflow=20,
        pool_recycle=300,      # Recycle connections every 5 minutes
        pool_timeout=30,
    )
else:
    # SQLite: sessions hop between worker threads via asyncio.to_thread
    engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(settings.SQLALCHEMY_DATABASE_URI, **engine_kwargs)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


