"""Global configuration: defaults and constants."""

# Filename prefix of snapshot files in the shared location
DEFAULT_FILENAME_PREFIX = "schedule-"

# Written into every snapshot's meta block
SNAPSHOT_FORMAT_VERSION = "1"

# Background poll cadence
DEFAULT_POLL_INTERVAL_SECONDS = 30.0

# Tombstones younger than this survive compaction regardless of session age
DEFAULT_TOMBSTONE_RETENTION_DAYS = 30

# Presence heartbeats
HEARTBEAT_PREFIX = "heartbeat-"
DEFAULT_HEARTBEAT_STALE_SECONDS = 60
DEFAULT_HEARTBEAT_CLEANUP_SECONDS = 24 * 60 * 60

# Advisory exclusive-access lock
LOCK_FILENAME = "lock.json"
DEFAULT_LOCK_STALE_SECONDS = 5 * 60

# Number of snapshots kept by cleanup; 0 keeps everything
DEFAULT_KEEP_VERSIONS = 0

# Optional table registry file under <project>/.shiftsync/
TABLES_FILENAME = "tables.json"
