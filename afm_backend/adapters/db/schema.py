"""
Database schema bootstrap.

Creates the asset tables the search core reads from. Versioned migrations are
owned by the deployment tooling; this module only guarantees that a fresh
database (development, tests) has the expected shape.
"""
from ...shared import Result, get_logger, log_success

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 1

SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS folders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id INTEGER NOT NULL,
    parent_id INTEGER REFERENCES folders(id) ON DELETE CASCADE,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS assets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id INTEGER NOT NULL,
    owner_id INTEGER,
    folder_id INTEGER REFERENCES folders(id) ON DELETE SET NULL,
    type TEXT NOT NULL DEFAULT 'image',  -- image, video, audio, doc
    title TEXT,
    description TEXT,
    status TEXT DEFAULT 'active',
    visibility TEXT DEFAULT 'team',
    language TEXT,
    rating INTEGER,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    captured_at TEXT,
    deleted_at TEXT
);

CREATE TABLE IF NOT EXISTS asset_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id INTEGER NOT NULL REFERENCES assets(id) ON DELETE CASCADE,
    storage_key TEXT,
    original_name TEXT,
    mime_type TEXT,
    size_bytes INTEGER
);

CREATE TABLE IF NOT EXISTS asset_business (
    asset_id INTEGER PRIMARY KEY REFERENCES assets(id) ON DELETE CASCADE,
    campaign_id TEXT,
    channel TEXT,
    brand TEXT,
    region TEXT,
    language TEXT
);

CREATE TABLE IF NOT EXISTS asset_media (
    asset_id INTEGER PRIMARY KEY REFERENCES assets(id) ON DELETE CASCADE,
    width INTEGER,
    height INTEGER,
    orientation TEXT,
    duration_sec REAL,
    fps REAL,
    video_codec TEXT,
    audio_codec TEXT,
    aspect_ratio TEXT
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    UNIQUE (team_id, name)
);

CREATE TABLE IF NOT EXISTS asset_tags (
    asset_id INTEGER NOT NULL REFERENCES assets(id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (asset_id, tag_id)
);
"""

INDEXES_AND_TRIGGERS = """
-- Full-text search over title/description; diacritics are folded by the tokenizer.
CREATE VIRTUAL TABLE IF NOT EXISTS assets_fts USING fts5(
    title,
    description,
    content='assets',
    content_rowid='id',
    tokenize='unicode61 remove_diacritics 2'
);

CREATE INDEX IF NOT EXISTS idx_assets_team_created ON assets(team_id, created_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_assets_folder ON assets(folder_id);
CREATE INDEX IF NOT EXISTS idx_asset_files_asset ON asset_files(asset_id);
CREATE INDEX IF NOT EXISTS idx_asset_tags_tag ON asset_tags(tag_id);
CREATE INDEX IF NOT EXISTS idx_asset_business_channel ON asset_business(channel);

CREATE TRIGGER IF NOT EXISTS assets_fts_insert AFTER INSERT ON assets BEGIN
    INSERT INTO assets_fts(rowid, title, description)
    VALUES (new.id, new.title, new.description);
END;

CREATE TRIGGER IF NOT EXISTS assets_fts_delete AFTER DELETE ON assets BEGIN
    INSERT INTO assets_fts(assets_fts, rowid, title, description)
    VALUES ('delete', old.id, old.title, old.description);
END;

CREATE TRIGGER IF NOT EXISTS assets_fts_update AFTER UPDATE OF title, description ON assets BEGIN
    INSERT INTO assets_fts(assets_fts, rowid, title, description)
    VALUES ('delete', old.id, old.title, old.description);
    INSERT INTO assets_fts(rowid, title, description)
    VALUES (new.id, new.title, new.description);
END;
"""


async def get_schema_version(db) -> int:
    res = await db.aquery("SELECT value FROM metadata WHERE key = 'schema_version'")
    if not res.ok or not res.data:
        return 0
    try:
        return int(res.data[0]["value"])
    except (TypeError, ValueError):
        return 0


async def init_schema(db) -> Result[bool]:
    """Create tables, FTS index and triggers if missing, then record the version."""
    result = await db.aexecutescript(SCHEMA_V1)
    if not result.ok:
        logger.error("Failed to create tables: %s", result.error)
        return result

    result = await db.aexecutescript(INDEXES_AND_TRIGGERS)
    if not result.ok:
        logger.error("Failed to create indexes/triggers: %s", result.error)
        return result

    version = await get_schema_version(db)
    if version < CURRENT_SCHEMA_VERSION:
        res = await db.aexecute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_version', ?)",
            (str(CURRENT_SCHEMA_VERSION),),
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to record schema version")
        log_success(logger, f"Schema initialized (version {CURRENT_SCHEMA_VERSION})")
    return Result.Ok(True)


async def rebuild_fts(db) -> Result[bool]:
    """Rebuild the external-content FTS index from the assets table."""
    res = await db.aexecute("INSERT INTO assets_fts(assets_fts) VALUES ('rebuild')")
    if not res.ok:
        return Result.Err(res.code, res.error or "FTS rebuild failed")
    return Result.Ok(True)
