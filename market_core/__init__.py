# =============================================================================
# market_core/__init__.py
# Offline-First Data-Access Core for the Campus Marketplace Client
# =============================================================================

from market_core.config import CoreConfig
from market_core.runtime import CoreServices, build_core, init_core, get_core, shutdown_core

__version__ = "0.1.0"

__all__ = [
    "CoreConfig",
    "CoreServices",
    "build_core",
    "init_core",
    "get_core",
    "shutdown_core",
    "__version__",
]
