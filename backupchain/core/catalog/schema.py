"""SQLite mirror of the msdb backup history tables.

Column names and meanings follow ``msdb.dbo.backupset``,
``backupmediafamily`` and ``backupfile`` so that the same queries run against
a live instance and an offline mirror. LSN columns are TEXT: SQLite's NUMERIC
affinity would turn 20+ digit LSNs into lossy REALs.
"""

BACKUPSET_TABLE = """
CREATE TABLE IF NOT EXISTS backupset (
    backup_set_id INTEGER PRIMARY KEY AUTOINCREMENT,
    media_set_id INTEGER NOT NULL,
    database_name TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('D', 'I', 'L', 'F', 'G', 'P', 'Q')),
    backup_start_date TEXT NOT NULL,
    backup_finish_date TEXT NOT NULL,
    first_lsn TEXT NOT NULL,
    last_lsn TEXT NOT NULL,
    checkpoint_lsn TEXT,
    database_backup_lsn TEXT,
    is_copy_only INTEGER DEFAULT 0 NOT NULL,
    last_recovery_fork_guid TEXT,
    backup_size INTEGER,
    compressed_backup_size INTEGER,
    server_name TEXT,
    machine_name TEXT,
    user_name TEXT,
    position INTEGER,
    software_major_version INTEGER,
    recovery_model TEXT,
    database_guid TEXT,
    CHECK (is_copy_only IN (0, 1))
);
"""

BACKUPMEDIAFAMILY_TABLE = """
CREATE TABLE IF NOT EXISTS backupmediafamily (
    media_set_id INTEGER NOT NULL,
    family_sequence_number INTEGER NOT NULL DEFAULT 1,
    media_family_id TEXT,
    physical_device_name TEXT,
    device_type INTEGER NOT NULL DEFAULT 2,
    mirror INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (media_set_id, family_sequence_number, mirror)
);
"""

BACKUPFILE_TABLE = """
CREATE TABLE IF NOT EXISTS backupfile (
    backup_set_id INTEGER NOT NULL,
    logical_name TEXT,
    physical_name TEXT,
    file_type TEXT,
    file_size INTEGER,
    FOREIGN KEY (backup_set_id) REFERENCES backupset(backup_set_id) ON DELETE CASCADE
);
"""

CATALOG_PROPERTIES_TABLE = """
CREATE TABLE IF NOT EXISTS catalog_properties (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_backupset_database ON backupset(database_name)",
    "CREATE INDEX IF NOT EXISTS idx_backupset_media_set ON backupset(media_set_id)",
    "CREATE INDEX IF NOT EXISTS idx_backupset_finish ON backupset(backup_finish_date)",
    "CREATE INDEX IF NOT EXISTS idx_backupfile_set ON backupfile(backup_set_id)",
]

ALL_TABLES = [
    BACKUPSET_TABLE,
    BACKUPMEDIAFAMILY_TABLE,
    BACKUPFILE_TABLE,
    CATALOG_PROPERTIES_TABLE,
]

# Reported for mirrors that do not record the source engine version (SQL Server 2019)
DEFAULT_SERVER_MAJOR_VERSION = 15
