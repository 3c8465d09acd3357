from .env import EnvError, get_app_env, load_env
from .logging_config import get_logger

__all__ = ["EnvError", "get_app_env", "load_env", "get_logger"]
