MONTH_KEY_PREFIX = "todo-calendar-"

STREAK_META = "streak"
RETRO_LOCK_META = "retroLock"
IMPORT_EXPORT_META = "importExportEnabled"
MOMENT_CATEGORIES_META = "momentCategories"

LOCAL_STREAK_KEY = "planner-streak"

REMINDER_TITLE = "Task Reminder"
REMINDER_LEAD_MINUTES = 10
REMINDER_MAX_AHEAD_HOURS = 24
REMINDER_DEBOUNCE_MS = 100
MISSED_DAY_CHECK_DELAY_S = 1.0

DAY_STATUS_EMPTY = "empty"
DAY_STATUS_COMPLETE = "complete"
DAY_STATUS_INCOMPLETE = "incomplete"
DAY_STATUS_NO_TASKS = "no-tasks"

DEFAULT_MOMENT_CATEGORIES = [
    {"id": "personal", "name": "Personal"},
    {"id": "work", "name": "Work"},
    {"id": "health", "name": "Health"},
    {"id": "learning", "name": "Learning"},
    {"id": "social", "name": "Social"},
    {"id": "creative", "name": "Creative"},
]
