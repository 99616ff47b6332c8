import os
from dotenv import load_dotenv

load_dotenv()


def _env_number(name: str, default: float, cast=float):
    """
    Read a numeric setting from the environment.

    Raises:
        RuntimeError: if the variable is set but cannot be parsed.
    """
    raw = os.environ.get(name, "").strip()
    if not raw:
        return cast(default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


# Plan store / audit retention
PLAN_HISTORY_LIMIT = _env_number("INDUCTION_PLAN_HISTORY_LIMIT", 50, int)
AUDIT_LOG_LIMIT = _env_number("INDUCTION_AUDIT_LOG_LIMIT", 10000, int)

# Ingestion quality gates
STALE_DATA_MINUTES = _env_number("INDUCTION_STALE_DATA_MINUTES", 30.0)
CONSISTENCY_FLOOR = _env_number("INDUCTION_CONSISTENCY_FLOOR", 0.9)

# Scoring policy
FITNESS_EXPIRY_WARNING_DAYS = _env_number("INDUCTION_FITNESS_EXPIRY_WARNING_DAYS", 3, int)
RISK_WEIGHT_THRESHOLD = -30.0
SERVICE_SCORE_FLOOR = -20.0


def get_cors_origins() -> list[str]:
    """Return allowed CORS origins from BACKEND_CORS_ORIGINS (comma separated), '*' if unset."""
    origins_env = os.getenv("BACKEND_CORS_ORIGINS")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return ["*"]
