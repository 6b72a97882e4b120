import aiosqlite
import os
import logging
import constants

# ロガーを取得
logger = logging.getLogger(__name__)

# データベース接続を管理する非同期コンテキストマネージャー
class DatabaseConnection:
    def __init__(self):
        self.conn = None

    async def __aenter__(self):
        self.conn = await aiosqlite.connect(DB_FILE)
        self.conn.row_factory = aiosqlite.Row # カラム名でアクセスできるようにする
        logger.debug("Database connection obtained.")
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        if self.conn:
            await self.conn.close()
            logger.debug("Database connection closed.")
        # 例外が発生した場合は、そのまま伝播させる
        return False


# データベースファイル名
DB_FILE = constants.DB_FILE_NAME

# call_sessions テーブル: 終了した通話の記録
# guild_id: ギルドID
# channel_id: VCチャンネルID
# started_by: 通話を始めたメンバーのID
# start_time: 通話開始時刻 (ISO 8601 形式, UTC)
# duration: 通話時間 (秒単位)
SQL_CREATE_CALL_SESSIONS = f"""
    CREATE TABLE IF NOT EXISTS {constants.TABLE_CALL_SESSIONS} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        {constants.COLUMN_GUILD_ID} INTEGER NOT NULL,
        {constants.COLUMN_CHANNEL_ID} INTEGER NOT NULL,
        {constants.COLUMN_STARTED_BY} INTEGER NOT NULL,
        {constants.COLUMN_START_TIME} TEXT NOT NULL,
        {constants.COLUMN_DURATION} INTEGER NOT NULL
    )
"""

SQL_CREATE_CALL_SESSIONS_INDEX = f"""
    CREATE INDEX IF NOT EXISTS idx_call_sessions_guild_start
    ON {constants.TABLE_CALL_SESSIONS} ({constants.COLUMN_GUILD_ID}, {constants.COLUMN_START_TIME})
"""

SQL_INSERT_CALL_SESSION = f"""
    INSERT INTO {constants.TABLE_CALL_SESSIONS}
    ({constants.COLUMN_GUILD_ID}, {constants.COLUMN_CHANNEL_ID}, {constants.COLUMN_STARTED_BY}, {constants.COLUMN_START_TIME}, {constants.COLUMN_DURATION})
    VALUES (?, ?, ?, ?, ?)
"""

SQL_GET_RECENT_CALL_SESSIONS = f"""
    SELECT {constants.COLUMN_CHANNEL_ID}, {constants.COLUMN_STARTED_BY}, {constants.COLUMN_START_TIME}, {constants.COLUMN_DURATION}
    FROM {constants.TABLE_CALL_SESSIONS}
    WHERE {constants.COLUMN_GUILD_ID} = ?
    ORDER BY {constants.COLUMN_START_TIME} DESC, id DESC
    LIMIT ?
"""


async def init_db():
    logger.info(f"Starting database '{DB_FILE}' initialization.")
    # データベースファイルが存在しない場合にメッセージを出力
    if not os.path.exists(DB_FILE):
        logger.info(f"Database file '{DB_FILE}' not found. Creating a new one.")

    try:
        async with DatabaseConnection() as conn:
            cursor = await conn.cursor()
            await cursor.execute(SQL_CREATE_CALL_SESSIONS)
            logger.debug(f"Checked or created table '{constants.TABLE_CALL_SESSIONS}'.")
            await cursor.execute(SQL_CREATE_CALL_SESSIONS_INDEX)
            logger.debug("Checked or created indexes.")
            await conn.commit()
    except Exception as e:
        logger.error(f"An error occurred during database initialization: {e}")
        raise # エラーを再送出

    logger.info(f"Database '{DB_FILE}' initialization complete.")


async def record_call_session(guild_id: int, channel_id: int, started_by: int, start_time, duration_seconds: int):
    """
    終了した通話をデータベースに記録します。
    """
    try:
        async with DatabaseConnection() as conn:
            cursor = await conn.cursor()
            await cursor.execute(SQL_INSERT_CALL_SESSION, (guild_id, channel_id, started_by, start_time.isoformat(), int(duration_seconds)))
            await conn.commit()
            logger.info(f"Recorded call session. Guild: {guild_id}, Channel: {channel_id}, Start time: {start_time.isoformat()}, Duration: {duration_seconds}")
    except Exception as e:
        logger.error(f"An error occurred while recording call session (Guild: {guild_id}, Channel: {channel_id}, Start time: {start_time}): {e}")
        raise # エラーを再送出


async def get_recent_call_sessions(guild_id: int, limit: int = constants.CALL_HISTORY_DEFAULT_COUNT):
    """
    指定されたギルドの最近の通話を新しい順に取得します。
    エラーが発生した場合は空のリストを返します。
    """
    try:
        async with DatabaseConnection() as conn:
            cursor = await conn.cursor()
            await cursor.execute(SQL_GET_RECENT_CALL_SESSIONS, (guild_id, limit))
            rows = await cursor.fetchall()
            logger.debug(f"Fetched {len(rows)} call sessions for guild {guild_id}.")
            return [dict(row) for row in rows]
    except Exception as e:
        logger.error(f"An error occurred while fetching call sessions for guild {guild_id}: {e}")
        return []
