import pytest
import pytest_asyncio # Explicitly import for the decorator
import aiosqlite
import datetime
import os
import sys

# Add the parent directory to the Python path
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

# Import the module whose components will be patched or used
import database
import constants as app_constants

# Import the functions to be tested
from database import record_call_session, get_recent_call_sessions

# Test DB URI - using a unique name for the in-memory DB
TEST_DB_URI = "file:test_db_call_sessions?mode=memory&cache=shared"

T0 = datetime.datetime(2024, 5, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def actual_fixed_db_conn():
    """
    Provides a connection to an in-memory SQLite database with the schema pre-applied
    and row_factory set to aiosqlite.Row.
    """
    conn = await aiosqlite.connect(TEST_DB_URI, uri=True)
    conn.row_factory = aiosqlite.Row
    cursor = await conn.cursor()
    await cursor.execute(database.SQL_CREATE_CALL_SESSIONS)
    await cursor.execute(database.SQL_CREATE_CALL_SESSIONS_INDEX)
    await cursor.execute(f"DELETE FROM {app_constants.TABLE_CALL_SESSIONS}")
    await conn.commit()
    yield conn
    await conn.close()


@pytest.fixture(autouse=True)
def patch_database_connection_class(monkeypatch, actual_fixed_db_conn):
    """
    Autouse synchronous fixture that replaces the entire DatabaseConnection class
    with a mock that uses the actual_fixed_db_conn.
    """
    class MockDatabaseConnection:
        def __init__(self):
            pass

        async def __aenter__(self):
            return actual_fixed_db_conn

        async def __aexit__(self, exc_type, exc, tb):
            pass

    monkeypatch.setattr(database, 'DatabaseConnection', MockDatabaseConnection)
    monkeypatch.setattr(database, 'DB_FILE', TEST_DB_URI)


@pytest.mark.asyncio
async def test_init_db_is_idempotent():
    await database.init_db()
    await database.init_db()
    assert await get_recent_call_sessions(1) == []


@pytest.mark.asyncio
async def test_record_and_fetch_call_session():
    await record_call_session(1, 101, 11, T0, 307)
    sessions = await get_recent_call_sessions(1)
    assert sessions == [{
        app_constants.COLUMN_CHANNEL_ID: 101,
        app_constants.COLUMN_STARTED_BY: 11,
        app_constants.COLUMN_START_TIME: T0.isoformat(),
        app_constants.COLUMN_DURATION: 307,
    }]


@pytest.mark.asyncio
async def test_recent_call_sessions_are_newest_first_and_limited():
    for minutes in range(4):
        await record_call_session(1, 101, 11, T0 + datetime.timedelta(minutes=minutes), minutes)
    sessions = await get_recent_call_sessions(1, 2)
    assert [s[app_constants.COLUMN_DURATION] for s in sessions] == [3, 2]


@pytest.mark.asyncio
async def test_recent_call_sessions_are_scoped_to_guild():
    await record_call_session(1, 101, 11, T0, 10)
    await record_call_session(2, 201, 21, T0, 20)
    sessions = await get_recent_call_sessions(2)
    assert len(sessions) == 1
    assert sessions[0][app_constants.COLUMN_CHANNEL_ID] == 201


@pytest.mark.asyncio
async def test_get_recent_call_sessions_returns_empty_on_error(monkeypatch):
    class BrokenConnection:
        async def __aenter__(self):
            raise aiosqlite.OperationalError("database is locked")

        async def __aexit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr(database, 'DatabaseConnection', BrokenConnection)
    assert await get_recent_call_sessions(1) == []


@pytest.mark.asyncio
async def test_record_call_session_reraises_on_error(monkeypatch):
    class BrokenConnection:
        async def __aenter__(self):
            raise aiosqlite.OperationalError("disk I/O error")

        async def __aexit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr(database, 'DatabaseConnection', BrokenConnection)
    with pytest.raises(aiosqlite.OperationalError):
        await record_call_session(1, 101, 11, T0, 10)
