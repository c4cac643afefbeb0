from typing import Optional
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from infrastructure.config import settings

# Identity server database: pepper slots, hash catalog, user history
engine = create_async_engine(settings.DATABASE_URL)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Local user directory (read-only)
userdb_engine = create_async_engine(settings.USERDB_URL)
UserDBSessionLocal = async_sessionmaker(userdb_engine, class_=AsyncSession, expire_on_commit=False)

# Homeserver view (read-only, optional)
MatrixDBSessionLocal: Optional[async_sessionmaker] = None
if settings.matrix_db_configured:
    matrix_engine = create_async_engine(settings.MATRIX_DATABASE_URL)
    MatrixDBSessionLocal = async_sessionmaker(matrix_engine, class_=AsyncSession, expire_on_commit=False)
