import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    RFQ_GATEWAY_MODE = os.environ.get("RFQ_GATEWAY_MODE", "memory")
    RFQ_MEMORY_SEED_DEMO = _bool_env("RFQ_MEMORY_SEED_DEMO", True)
    RFQ_API_BASE_URL = os.environ.get("RFQ_API_BASE_URL")
    RFQ_API_TOKEN = os.environ.get("RFQ_API_TOKEN")
    RFQ_API_TIMEOUT_SECONDS = _int_env("RFQ_API_TIMEOUT_SECONDS", 20)
    RFQ_API_VERIFY_SSL = _bool_env("RFQ_API_VERIFY_SSL", True)

    RFQ_POLLER_ENABLED = _bool_env("RFQ_POLLER_ENABLED", True)
    RFQ_POLL_INTERVAL_SECONDS = _int_env("RFQ_POLL_INTERVAL_SECONDS", 15)
    RFQ_POLL_DEBOUNCE_SECONDS = _int_env("RFQ_POLL_DEBOUNCE_SECONDS", 2)
    RFQ_SESSION_AUDIENCE = os.environ.get("RFQ_SESSION_AUDIENCE", "")

    NOTIFICATION_DEDUP_TTL_SECONDS = _int_env("NOTIFICATION_DEDUP_TTL_SECONDS", 300)
    NOTIFICATION_PURGE_INTERVAL_SECONDS = _int_env("NOTIFICATION_PURGE_INTERVAL_SECONDS", 300)
