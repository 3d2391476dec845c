# Key layout shared with every other instance talking to the same Redis.
ALL_TASKS = "tasks:all"
STATS = "tasks:stats"
ALL_TASK_KEYS = "tasks:*"

TASK_TTL_SECONDS = 60
STATS_TTL_SECONDS = 30


def task_key(task_id: int) -> str:
    return f"tasks:{task_id}"
