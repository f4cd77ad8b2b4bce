import asyncpg

TABLES = [
    """CREATE TABLE IF NOT EXISTS job_control(
        id INTEGER PRIMARY KEY DEFAULT 1,
        status TEXT NOT NULL DEFAULT 'stopped' CHECK (status IN ('started', 'stopped'))
    )""",
    """CREATE TABLE IF NOT EXISTS tracked_usernames(
        id SERIAL PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        display_name TEXT,
        is_active BOOLEAN NOT NULL DEFAULT true,
        added_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
        last_seen TIMESTAMP WITH TIME ZONE,
        total_streams INTEGER NOT NULL DEFAULT 0,
        total_duration INTEGER NOT NULL DEFAULT 0,
        notes TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS stream_sessions(
        id SERIAL PRIMARY KEY,
        session_id TEXT NOT NULL UNIQUE,
        streamer_username TEXT NOT NULL,
        room_id TEXT NOT NULL,
        start_time TIMESTAMP WITH TIME ZONE NOT NULL,
        end_time TIMESTAMP WITH TIME ZONE,
        duration INTEGER NOT NULL DEFAULT 0,
        total_likes INTEGER NOT NULL DEFAULT 0,
        total_gifts INTEGER NOT NULL DEFAULT 0,
        total_comments INTEGER NOT NULL DEFAULT 0,
        total_shares INTEGER NOT NULL DEFAULT 0,
        total_members INTEGER NOT NULL DEFAULT 0,
        is_completed BOOLEAN NOT NULL DEFAULT false
    )""",
    """CREATE TABLE IF NOT EXISTS user_stats(
        id SERIAL PRIMARY KEY,
        streamer_username TEXT NOT NULL,
        user_nickname TEXT NOT NULL,
        total_gifts INTEGER NOT NULL DEFAULT 0,
        total_likes INTEGER NOT NULL DEFAULT 0,
        total_comments INTEGER NOT NULL DEFAULT 0,
        total_shares INTEGER NOT NULL DEFAULT 0,
        total_memberships INTEGER NOT NULL DEFAULT 0,
        first_seen TIMESTAMP WITH TIME ZONE NOT NULL,
        last_seen TIMESTAMP WITH TIME ZONE NOT NULL,
        UNIQUE (streamer_username, user_nickname)
    )""",
    """CREATE TABLE IF NOT EXISTS tiktok_stream_info(
        id SERIAL PRIMARY KEY,
        streamer_username TEXT NOT NULL UNIQUE,
        room_id TEXT NOT NULL DEFAULT '',
        hls_url TEXT,
        create_time TEXT,
        streamer_bio TEXT,
        is_live BOOLEAN NOT NULL DEFAULT false,
        last_updated TIMESTAMP WITH TIME ZONE NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS tiktok_chat_events(
        id SERIAL PRIMARY KEY,
        streamer_username TEXT NOT NULL,
        user_nickname TEXT NOT NULL,
        comment TEXT NOT NULL,
        timestamp TIMESTAMP WITH TIME ZONE NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS tiktok_gift_events(
        id SERIAL PRIMARY KEY,
        streamer_username TEXT NOT NULL,
        user_nickname TEXT NOT NULL,
        gift_id TEXT NOT NULL,
        repeat_count INTEGER NOT NULL,
        timestamp TIMESTAMP WITH TIME ZONE NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS tiktok_like_events(
        id SERIAL PRIMARY KEY,
        streamer_username TEXT NOT NULL,
        user_nickname TEXT NOT NULL,
        like_count INTEGER NOT NULL,
        total_like_count INTEGER NOT NULL,
        timestamp TIMESTAMP WITH TIME ZONE NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS tiktok_share_events(
        id SERIAL PRIMARY KEY,
        streamer_username TEXT NOT NULL,
        user_nickname TEXT NOT NULL,
        timestamp TIMESTAMP WITH TIME ZONE NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS tiktok_member_events(
        id SERIAL PRIMARY KEY,
        streamer_username TEXT NOT NULL,
        user_nickname TEXT NOT NULL,
        timestamp TIMESTAMP WITH TIME ZONE NOT NULL
    )""",
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_streamer ON stream_sessions (streamer_username, start_time DESC)",
    "CREATE INDEX IF NOT EXISTS idx_chat_streamer ON tiktok_chat_events (streamer_username, timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS idx_gift_streamer ON tiktok_gift_events (streamer_username, timestamp DESC)",
]


async def setup_database_schema(connection: asyncpg.Connection) -> None:
    """Create tables and seed the single job_control row (status 'stopped')."""
    async with connection.transaction():
        for statement in TABLES + INDEXES:
            await connection.execute(statement)
        await connection.execute(
            "INSERT INTO job_control (id, status) VALUES (1, 'stopped') ON CONFLICT (id) DO NOTHING"
        )
