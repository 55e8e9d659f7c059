from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.pool import QueuePool
from .core.config import settings


DB_URL = settings.DATABASE_URL

# SQLite connections are shared across the threads of the server
connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}

# Create write engine with connection pooling
write_engine = create_engine(
    DB_URL,
    connect_args=connect_args,
    poolclass=QueuePool,
    pool_size=5,  # Number of connections to keep open
    max_overflow=10,  # Maximum number of connections to create beyond pool_size
    pool_timeout=30,  # Timeout in seconds for getting a connection from the pool
    pool_recycle=3600,  # Recycle connections after 1 hour
    pool_pre_ping=True  # Verify connections before using them from the pool
)

# Create read engine with connection pooling
read_engine = create_engine(
    DB_URL,
    connect_args=connect_args,
    poolclass=QueuePool,
    pool_size=10,
    max_overflow=20,
    pool_timeout=30,
    pool_recycle=3600,
    pool_pre_ping=True
)

engine = write_engine

def create_db_and_tables():
    # Importing the models registers their tables on the metadata
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(write_engine)

# Session for write operations
def get_write_session():
    with Session(write_engine) as session:
        yield session

# Session for read operations
def get_read_session():
    with Session(read_engine) as session:
        yield session

