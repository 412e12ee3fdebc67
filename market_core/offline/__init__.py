# =============================================================================
# market_core/offline/__init__.py
# Offline-First Building Blocks for the Marketplace Client
# =============================================================================
"""
Offline-First Architecture Module

Reads keep working without a connection: every remote result is written
through to SQLite, and repositories pick one of two read strategies.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                 DOMAIN REPOSITORIES (orders, ...)                │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────┐        ┌──────────────────┐              │
│   │ CacheFirstReader │        │   GatedFetcher   │              │
│   │ (cache + refresh)│        │ (online? fetch)  │              │
│   └──────────────────┘        └──────────────────┘              │
│        │        │                  │        │                    │
│        │        ▼                  ▼        │                    │
│        │  ┌────────────┐   ┌──────────────┐ │                    │
│        │  │ Supervisor │   │ ConnectionMgr│ │                    │
│        │  │ (bg tasks) │   │ (probes)     │ │                    │
│        │  └────────────┘   └──────────────┘ │                    │
│        ▼                                    ▼                    │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │          LocalDatabase (SQLite, FK cascades)             │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │                                     │
│                   EventBus (DataUpdated, ...)                    │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from market_core.offline import LocalDatabase, ConnectionManager

db = LocalDatabase(config.database_path)
db.initialize()
manager = ConnectionManager(backend_url=config.base_url)
"""

from market_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from market_core.offline.local_database import LocalDatabase

from market_core.offline.event_bus import (
    EventBus,
    Subscription,
    DataUpdated,
    ConnectionChanged,
    SessionChanged,
    CartChanged,
)

from market_core.offline.task_supervisor import BackgroundTaskSupervisor

from market_core.offline.strategies import (
    CacheFirstReader,
    GatedFetcher,
    ReadResult,
    DataSource,
    ReadState,
)

from market_core.offline.cart import CartStore, CartItem

__all__ = [
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Local Database
    "LocalDatabase",
    # Notifications
    "EventBus",
    "Subscription",
    "DataUpdated",
    "ConnectionChanged",
    "SessionChanged",
    "CartChanged",
    # Background Work
    "BackgroundTaskSupervisor",
    # Read Strategies
    "CacheFirstReader",
    "GatedFetcher",
    "ReadResult",
    "DataSource",
    "ReadState",
    # Cart
    "CartStore",
    "CartItem",
]
