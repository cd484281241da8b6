"""Linear Pulse - issue-tracker mirror and delivery health metrics.

Provides:
- Linear GraphQL client with distinguished rate-limit errors
- SQLite persistence gateway for issues, projects, engineers, initiatives
- Resumable multi-phase sync engine with bounded project concurrency
- Pure metrics computation (project aggregates, engineer WIP, health pillars)

Python Version: 3.10+ required
"""

from .__version__ import __version__
from .config import PulseConfig, get_config, reset_config
from .logging_config import StructuredFormatter, configure_logging

__all__ = [
    "PulseConfig",
    "StructuredFormatter",
    "__version__",
    "configure_logging",
    "get_config",
    "reset_config",
]
