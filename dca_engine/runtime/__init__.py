from .logging import setup_logger
from .loop import run_scheduler_loop
from .loop_helpers import bootstrap_dependencies, close_clients
from .settings import AppSettings

__all__ = [
    "AppSettings",
    "bootstrap_dependencies",
    "close_clients",
    "run_scheduler_loop",
    "setup_logger",
]
