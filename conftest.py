import os

# Tests run against in-memory SQLite with a fixed signing secret
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("LOG_SAMPLE_2XX", "0")
