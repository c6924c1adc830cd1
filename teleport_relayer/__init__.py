"""
Teleport Relayer

Watches lock events on several EVM source chains and mints the locked
amount on a single destination token. Completed mints are kept for the
depositor's client, which polls the status API until its mint shows up.

Usage:
    # Run the relayer and its status API
    teleport-relayer run

    # Run one polling round (for testing)
    teleport-relayer run --once

    # Inspect configured chains and their cursors
    teleport-relayer chains
"""

__version__ = "0.1.0"

from .config import ConfigurationError, RelayerConfig, Settings, SourceChainConfig
from .db import RelayerDatabase
from .evm import DestinationClient, SourceChainClient
from .executor import MintExecutor
from .models import DepositEvent, MintRecord
from .relayer import TeleportRelayer
from .scheduler import Scheduler
from .store import CompletionStore
from .watcher import ChainCursor, ChainWatcher

__all__ = [
    "__version__",
    "ConfigurationError",
    "RelayerConfig",
    "Settings",
    "SourceChainConfig",
    "RelayerDatabase",
    "DestinationClient",
    "SourceChainClient",
    "MintExecutor",
    "DepositEvent",
    "MintRecord",
    "TeleportRelayer",
    "Scheduler",
    "CompletionStore",
    "ChainCursor",
    "ChainWatcher",
]
