from contentflow.core.config import settings


def is_test_env() -> bool:
    # ENV=test runs every task inline in the calling process
    return (settings.env or "local").strip().lower() == "test"
