import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent


class Config:
    CATALOG_PATH: str = (
        os.environ.get("CIGATE_CATALOG") or str(PROJECT_ROOT / "config" / "templates.yaml")
    )

    BACKEND: str = os.environ.get("CIGATE_BACKEND") or "local"
    BACKEND_URL: str = os.environ.get("CIGATE_BACKEND_URL") or ""

    JOB_TIMEOUT_SECONDS: float = float(os.environ.get("CIGATE_JOB_TIMEOUT") or 3600)
    BACKEND_RETRIES: int = int(os.environ.get("CIGATE_BACKEND_RETRIES") or 3)
    RETRY_BASE_DELAY: float = float(os.environ.get("CIGATE_RETRY_BASE_DELAY") or 1.0)

    LOG_DIR: str = os.environ.get("CIGATE_LOG_DIR") or ""
    LOG_LEVEL: str = os.environ.get("CIGATE_LOG_LEVEL") or "INFO"

    # Stop submitting new jobs after the first failure (API runs; the CLI uses --fail-fast)
    FAIL_FAST: bool = os.environ.get("CIGATE_FAIL_FAST", "").lower() in ("1", "true", "yes")
