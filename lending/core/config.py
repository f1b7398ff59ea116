# lending/core/config.py
import os
import sys
import logging
from dataclasses import fields
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from lending.core.policy import LendingPolicy

project_root = Path(__file__).resolve().parent.parent.parent
dotenv_path = project_root / ".env"

if dotenv_path.is_file():
    logger.info(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path)
else:
    logger.warning(f".env file not found at {dotenv_path}. Relying on system environment variables.")


class InterceptHandler(logging.Handler):
    """Routes standard library log records into Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging():
    """Console + rotating file sinks, stdlib loggers intercepted."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/lending_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = os.getenv("LOG_SERIALIZE", "False").lower() == "true"

    logger.remove()
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file_path,
            level=log_level_name,
            format=log_format,
            rotation=log_rotation,
            retention=log_retention,
            serialize=log_serialize,
            enqueue=True,
            backtrace=True,
            diagnose=True,
            encoding="utf-8",
        )
        logger.info(f"File logging enabled at: {log_file_path}")
    except OSError as e:
        logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette", "apscheduler")):
            existing_logger = logging.getLogger(name)
            existing_logger.handlers = [InterceptHandler()]
            existing_logger.propagate = False

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name}. Using default: {default}.")
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name}. Using default: {default}.")
        return default


def _bool_env(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def load_policy() -> LendingPolicy:
    """LendingPolicy with POLICY_<FIELD> environment overrides applied."""
    defaults = LendingPolicy()
    overrides = {}
    for f in fields(LendingPolicy):
        env_name = f"POLICY_{f.name.upper()}"
        if os.getenv(env_name) is None:
            continue
        default = getattr(defaults, f.name)
        if isinstance(default, int):
            overrides[f.name] = _int_env(env_name, default)
        else:
            overrides[f.name] = _float_env(env_name, default)
    if overrides:
        logger.info(f"Lending policy overrides: {overrides}")
    return LendingPolicy(**overrides)


# --- JWT ---
SECRET_KEY: str = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    logger.critical("FATAL: SECRET_KEY environment variable is not set.")
    raise ValueError("SECRET_KEY environment variable is not set.")

ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 30)

# --- Database ---
MONGODB_URL: str = os.getenv("MONGODB_URL")
if not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "lending_db"
_path_part = MONGODB_URL.rsplit("/", 1)[-1].split("?")[0]
if _path_part and "://" in MONGODB_URL and MONGODB_URL.count("/") > 2:
    _default_db_name = _path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# --- Scheduler / overdue scan ---
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")
OVERDUE_SCAN_ENABLED: bool = _bool_env("OVERDUE_SCAN_ENABLED", False)
OVERDUE_SCAN_INTERVAL_MINUTES: int = _int_env("OVERDUE_SCAN_INTERVAL_MINUTES", 60)
OVERDUE_SCAN_THRESHOLD_DAYS: int = _int_env("OVERDUE_SCAN_THRESHOLD_DAYS", 1)
OVERDUE_AUTO_INITIATE_RETURNS: bool = _bool_env("OVERDUE_AUTO_INITIATE_RETURNS", False)
OVERDUE_PENALTY_MULTIPLIER: float = _float_env("OVERDUE_PENALTY_MULTIPLIER", 1.0)

LENDING_POLICY: LendingPolicy = load_policy()

logger.info(f"JWT Algorithm: {ALGORITHM}")
logger.info(f"Access Token Expire Minutes: {ACCESS_TOKEN_EXPIRE_MINUTES}")
logger.info(f"Database Name: {DATABASE_NAME}")
logger.info(f"Overdue scan enabled: {OVERDUE_SCAN_ENABLED} (every {OVERDUE_SCAN_INTERVAL_MINUTES} min)")
