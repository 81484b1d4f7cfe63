"""Canonical logging field names shared by formatters and context binding."""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"

# Sync correlation fields.
WORKSPACE_ID = "workspace_id"
MAPPING_ID = "mapping_id"
SCHEDULE_ID = "schedule_id"
TRIGGER = "trigger"

# Common process-level fields.
SERVICE = "service"
