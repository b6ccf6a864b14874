"""Game constants and wire event names"""

from typing import Dict, List

RANK_VALUES: Dict[str, int] = {
    '2': 2, '3': 3, '4': 4, '5': 5, '6': 6, '7': 7, '8': 8,
    '9': 9, '10': 10, 'J': 11, 'Q': 12, 'K': 13, 'A': 14,
    'LO': 15, 'HI': 16,
}

# Low to high, natural suits only
RANK_ORDER: List[str] = ['2', '3', '4', '5', '6', '7', '8', '9', '10', 'J', 'Q', 'K', 'A']

SUITS: List[str] = ['spades', 'hearts', 'diamonds', 'clubs']
JOKER_SUIT = 'joker'
HI_JOKER = 'HI'
LO_JOKER = 'LO'

# Cards per player, hand by hand
HAND_PROGRESSION: List[int] = [12, 10, 8, 6, 4, 2, 1, 3, 5, 7, 9, 11, 13]
MAX_HAND_SIZE = 13

BORE_BIDS: List[str] = ['B', '2B', '3B', '4B']
BORE_MULTIPLIERS: Dict[str, int] = {'B': 2, '2B': 4, '3B': 8, '4B': 16}

SEATS: List[int] = [1, 2, 3, 4]
TRICK_SIZE = 4

# Match phases
PHASE_NONE = 'none'
PHASE_LOBBY = 'lobby'
PHASE_DRAW = 'draw'
PHASE_BIDDING = 'bidding'
PHASE_PLAYING = 'playing'
PHASE_ENDED = 'ended'

PHASES: List[str] = [PHASE_NONE, PHASE_LOBBY, PHASE_DRAW, PHASE_BIDDING, PHASE_PLAYING, PHASE_ENDED]

# Connection lifecycle
CONNECTION_DISCONNECTED = 'disconnected'
CONNECTION_CONNECTING = 'connecting'
CONNECTION_CONNECTED = 'connected'
CONNECTION_RECONNECTING = 'reconnecting'

# Connection state-change kinds delivered to on_state_change subscribers
STATE_CHANGED = 'stateChanged'
STATE_DISCONNECT = 'disconnect'
STATE_RECONNECTING = 'reconnecting'
STATE_RECONNECT_FAILED = 'reconnectFailed'

# Transport lifecycle signals
SIGNAL_CONNECT = 'connect'
SIGNAL_DISCONNECT = 'disconnect'
SIGNAL_RECONNECT_ATTEMPT = 'reconnect_attempt'
SIGNAL_RECONNECT_FAILED = 'reconnect_failed'

# Durable session store keys
SESSION_MATCH_ID = 'gameId'
SESSION_USERNAME = 'username'

# Game state container events
EVENT_RESET = 'reset'
EVENT_PLAYER_SET = 'playerSet'
EVENT_GAME_INFO_SET = 'gameInfoSet'
EVENT_PHASE_CHANGED = 'phaseChanged'
EVENT_TRUMP_SET = 'trumpSet'
EVENT_TRUMP_BROKEN = 'trumpBroken'
EVENT_TURN_CHANGED = 'turnChanged'
EVENT_BIDDING_CHANGED = 'biddingChanged'
EVENT_HAND_CHANGED = 'handChanged'
EVENT_BID_RECEIVED = 'bidReceived'
EVENT_TRICK_SCORES_CHANGED = 'trickScoresChanged'
EVENT_GAME_SCORES_CHANGED = 'gameScoresChanged'
EVENT_CARD_PLAYED = 'cardPlayed'
EVENT_TRICK_CLEARED = 'trickCleared'
EVENT_PLAYERS_SET = 'playersSet'
EVENT_PLAYER_DATA_SET = 'playerDataSet'
EVENT_PLAYER_NAMES_UPDATED = 'playerNamesUpdated'
EVENT_HAS_PLAYED_CARD_CHANGED = 'hasPlayedCardChanged'
EVENT_HAS_DRAWN_CHANGED = 'hasDrawnChanged'
EVENT_TEMP_BIDS_CHANGED = 'tempBidsChanged'
EVENT_RAINBOW_ADDED = 'rainbowAdded'
EVENT_NEW_HAND_RESET = 'newHandReset'
EVENT_CARD_PLAY_ROLLED_BACK = 'cardPlayRolledBack'
EVENT_BID_ROLLED_BACK = 'bidRolledBack'
EVENT_STATE_RESTORED = 'stateRestored'
