from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from contentflow.core.config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True)

# expire_on_commit=False: the job store hands out records after the session closes
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
