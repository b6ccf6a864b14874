"""
Client-side game state sync for the BAB trick-taking card game.
"""

from .client import GameClient
from .config import ClientConfig, config_from_env, create_config, default_config
from .connection import ConnectionManager
from .rules import LegalityResult, get_legal_cards, is_legal_move
from .state import GameState

__all__ = [
    "GameClient", "ClientConfig", "ConnectionManager", "GameState", "LegalityResult",
    "config_from_env", "create_config", "default_config", "get_legal_cards", "is_legal_move",
]
