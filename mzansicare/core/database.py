from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator
import fnmatch
import redis
from .config import settings

def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # TestClient and the SSE stream touch the connection from worker threads
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 1800,  # Recycle connections after 30 minutes
        "pool_pre_ping": True,
    }

engine = create_engine(settings.get_database_url, **_engine_options(settings.get_database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Redis setup - mock for testing
if settings.TESTING:
    # Use a simple dict-based mock for Redis in tests
    class RedisMock:
        def __init__(self):
            self.data = {}
            self.lists = {}
            self.published = []

        def setex(self, key, time, value):
            self.data[key] = value
            return True

        def get(self, key):
            return self.data.get(key)

        def delete(self, *keys):
            removed = 0
            for key in keys:
                if key in self.data:
                    del self.data[key]
                    removed += 1
            return removed

        def keys(self, pattern="*"):
            return [k for k in self.data if fnmatch.fnmatch(k, pattern)]

        def incr(self, key):
            try:
                self.data[key] = str(int(self.data.get(key, 0)) + 1)
            except ValueError:
                self.data[key] = "1"
            return int(self.data[key])

        def lpush(self, key, *values):
            bucket = self.lists.setdefault(key, [])
            for value in values:
                bucket.insert(0, value)
            return len(bucket)

        def lrange(self, key, start, end):
            bucket = self.lists.get(key, [])
            return bucket[start:] if end == -1 else bucket[start:end + 1]

        def publish(self, channel, message):
            self.published.append((channel, message))
            return 0

        def flushall(self):
            self.data.clear()
            self.lists.clear()
            self.published.clear()
            return True

    redis_client = RedisMock()
else:
    # Real Redis client for production
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

# Database dependency
def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# Redis dependency
def get_redis():
    """Get Redis client."""
    return redis_client

# Database initialization
def init_db():
    """Initialize database tables."""
    # Import models so their tables are registered on Base.metadata
    from ..models import appointment, facility, feedback, reminder, ticket, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
