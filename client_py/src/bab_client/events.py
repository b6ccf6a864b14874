"""
Server and client message models.

Inbound payloads are decoded once, at the transport boundary, into one
model per message name so handlers work with typed values.
"""

import logging
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, model_validator

from .models import Card

logger = logging.getLogger(__name__)


class ServerEvent(str, Enum):
    """Inbound message names."""
    # Auth
    SIGN_IN_RESPONSE = "signInResponse"
    SIGN_UP_RESPONSE = "signUpResponse"
    FORCE_LOGOUT = "forceLogout"
    ACTIVE_GAME_FOUND = "activeGameFound"
    # Main room and lobby
    MAIN_ROOM_JOINED = "mainRoomJoined"
    MAIN_ROOM_MESSAGE = "mainRoomMessage"
    MAIN_ROOM_PLAYER_JOINED = "mainRoomPlayerJoined"
    LOBBIES_UPDATED = "lobbiesUpdated"
    LOBBY_CREATED = "lobbyCreated"
    LOBBY_JOINED = "lobbyJoined"
    LOBBY_PLAYER_JOINED = "lobbyPlayerJoined"
    LOBBY_PLAYER_LEFT = "lobbyPlayerLeft"
    LOBBY_MESSAGE = "lobbyMessage"
    PLAYER_READY_UPDATE = "playerReadyUpdate"
    ALL_PLAYERS_READY = "allPlayersReady"
    LEFT_LOBBY = "leftLobby"
    ROOM_FULL = "roomFull"
    # Draw phase
    START_DRAW = "startDraw"
    YOU_DREW = "youDrew"
    PLAYER_DREW = "playerDrew"
    TEAMS_ANNOUNCED = "teamsAnnounced"
    CREATE_UI = "createUI"
    # Game
    POSITION_UPDATE = "positionUpdate"
    GAME_START = "gameStart"
    BID_RECEIVED = "bidReceived"
    DONE_BIDDING = "doneBidding"
    UPDATE_TURN = "updateTurn"
    CARD_PLAYED = "cardPlayed"
    TRICK_COMPLETE = "trickComplete"
    HAND_COMPLETE = "handComplete"
    GAME_END = "gameEnd"
    RAINBOW = "rainbow"
    DESTROY_HANDS = "destroyHands"
    ABORT_GAME = "abortGame"
    CHAT_MESSAGE = "chatMessage"
    # Reconnection
    PLAYER_DISCONNECTED = "playerDisconnected"
    PLAYER_RECONNECTED = "playerReconnected"
    REJOIN_SUCCESS = "rejoinSuccess"
    REJOIN_FAILED = "rejoinFailed"
    ERROR = "error"


class ClientEvent(str, Enum):
    """Outbound message names."""
    SIGN_IN = "signIn"
    SIGN_UP = "signUp"
    CREATE_LOBBY = "createLobby"
    JOIN_LOBBY = "joinLobby"
    LEAVE_LOBBY = "leaveLobby"
    PLAYER_READY = "playerReady"
    PLAYER_UNREADY = "playerUnready"
    DRAW = "draw"
    PLAYER_BID = "playerBid"
    PLAY_CARD = "playCard"
    CHAT_MESSAGE = "chatMessage"
    REJOIN_GAME = "rejoinGame"


def _coerce_card(value: Any) -> Any:
    if isinstance(value, dict):
        return Card.from_dict(value)
    return value


CardField = Annotated[Card, BeforeValidator(_coerce_card)]
BidField = Union[int, str]


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _int_or(value: Any, default: Optional[int]) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _card_or_none(value: Any) -> Optional[Card]:
    if value is None:
        return None
    try:
        return Card.from_dict(value)
    except (KeyError, TypeError, ValueError):
        return None


def _team_score_or_none(value: Any) -> Optional[Dict[str, int]]:
    if not isinstance(value, dict):
        return None
    return {"team1": _int_or(value.get("team1"), 0), "team2": _int_or(value.get("team2"), 0)}


def _player_or_none(value: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(value, dict):
        return None
    position = _int_or(value.get("position"), None)
    if position is None:
        return None
    player = {"position": position}
    for key in ("username", "socketId", "pic"):
        if isinstance(value.get(key), str):
            player[key] = value[key]
    return player


class ServerMessage(BaseModel):
    """Base inbound message. Unknown fields are kept, not rejected."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class TeamScore(BaseModel):
    """Raw per-team values, team 1 holding the odd seats."""
    team1: int = 0
    team2: int = 0


class PlayerInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    position: int
    username: Optional[str] = None
    socket_id: Optional[str] = Field(default=None, alias="socketId")
    pic: Optional[str] = None


# Auth and lobby

class AuthResponse(ServerMessage):
    """Sign in / sign up response."""
    success: bool
    username: Optional[str] = None
    message: Optional[str] = None


class ForceLogout(ServerMessage):
    reason: Optional[str] = None


class ActiveGameFound(ServerMessage):
    game_id: str = Field(..., alias="gameId")


class MainRoomJoined(ServerMessage):
    pass


class LobbyJoined(ServerMessage):
    """Lobby created or joined."""
    lobby_id: Optional[str] = Field(default=None, alias="lobbyId")


class LeftLobby(ServerMessage):
    pass


class RoomFull(ServerMessage):
    message: Optional[str] = None


class RoomChat(ServerMessage):
    """Main room or lobby chat line."""
    message: str
    username: Optional[str] = None
    lobby_id: Optional[str] = Field(default=None, alias="lobbyId")
    timestamp: Optional[Union[int, float, str]] = None


class MainRoomPlayerJoined(ServerMessage):
    username: Optional[str] = None
    online_count: Optional[int] = Field(default=None, alias="onlineCount")
    online_users: List[Any] = Field(default_factory=list, alias="onlineUsers")


class LobbiesUpdated(ServerMessage):
    """Open lobbies and matches in progress, as listed in the main room."""
    lobbies: List[Dict[str, Any]] = Field(default_factory=list)
    in_progress_games: List[Dict[str, Any]] = Field(default_factory=list, alias="inProgressGames")
    tournaments: List[Any] = Field(default_factory=list)


class LobbyUpdate(ServerMessage):
    """
    Lobby roster change: a player joined, left or toggled ready.

    players is the full roster after the change; the other fields are
    set according to which change it was.
    """
    lobby_id: Optional[str] = Field(default=None, alias="lobbyId")
    players: List[Dict[str, Any]] = Field(default_factory=list)
    new_player: Optional[Dict[str, Any]] = Field(default=None, alias="newPlayer")
    left_username: Optional[str] = Field(default=None, alias="leftUsername")
    needs_more_players: Optional[bool] = Field(default=None, alias="needsMorePlayers")
    ready_socket_id: Optional[str] = Field(default=None, alias="readySocketId")


class AllPlayersReady(ServerMessage):
    game_id: Optional[str] = Field(default=None, alias="gameId")


# Draw phase

class StartDraw(ServerMessage):
    pass


class YouDrew(ServerMessage):
    card: Optional[CardField] = None


class PlayerDrew(ServerMessage):
    """Another player's draw. draw_order counts draws so far, from 1."""
    username: Optional[str] = None
    card: Optional[CardField] = None
    draw_order: Optional[int] = Field(default=None, alias="drawOrder")
    socket_id: Optional[str] = Field(default=None, alias="socketId")


class TeamsAnnounced(ServerMessage):
    """Partnerships settled by the draw, as two usernames per team."""
    team1: List[str] = Field(default_factory=list)
    team2: List[str] = Field(default_factory=list)


class CreateUI(ServerMessage):
    pass


class DestroyHands(ServerMessage):
    """Both teams bid zero: the hand is thrown in and dealt again."""
    pass


# Game

class PositionUpdate(ServerMessage):
    """
    Seat roster as parallel arrays.

    The server has used both singular and plural array names; both are
    accepted. Usernames may arrive as plain strings or {"username": ...}.
    """
    positions: List[int] = Field(default_factory=list)
    sockets: List[Optional[str]] = Field(default_factory=list)
    usernames: List[Optional[str]] = Field(default_factory=list)
    pics: List[Optional[str]] = Field(default_factory=list)
    your_position: Optional[int] = Field(default=None, alias="yourPosition")

    @model_validator(mode="before")
    @classmethod
    def normalize_arrays(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["positions"] = _first_present(data, "positions", "position") or []
        data["sockets"] = _first_present(data, "sockets", "socket") or []
        usernames = _first_present(data, "usernames", "username") or []
        data["usernames"] = [
            entry.get("username") if isinstance(entry, dict) else entry
            for entry in usernames
        ]
        data["pics"] = data.get("pics") or []
        for key in ("position", "socket", "username"):
            data.pop(key, None)
        return data


class GameStart(ServerMessage):
    """Hand dealt: hand, trump, dealer and running scores."""
    game_id: Optional[str] = Field(default=None, alias="gameId")
    position: Optional[int] = None
    current_hand: int = Field(default=0, alias="currentHand")
    dealer: Optional[int] = None
    trump: Optional[CardField] = None
    hand: List[CardField] = Field(default_factory=list)
    score1: Optional[int] = None
    score2: Optional[int] = None


class BidReceived(ServerMessage):
    position: int
    bid: BidField
    team1_mult: Optional[int] = Field(default=None, alias="team1Mult")
    team2_mult: Optional[int] = Field(default=None, alias="team2Mult")


class DoneBidding(ServerMessage):
    lead: Optional[int] = None
    bids: Dict[int, BidField] = Field(default_factory=dict)


class UpdateTurn(ServerMessage):
    current_turn: Optional[int] = Field(default=None, alias="currentTurn")

    @model_validator(mode="before")
    @classmethod
    def accept_turn_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("currentTurn") is None and "turn" in data:
            data = dict(data)
            data["currentTurn"] = data.pop("turn")
        return data


class CardPlayed(ServerMessage):
    card: CardField
    position: int
    trump_broken: Optional[bool] = Field(default=None, alias="trumpBroken")

    @model_validator(mode="before")
    @classmethod
    def accept_trump_flag(cls, data: Any) -> Any:
        # Older servers send the broken flag as a bare "trump" boolean
        if isinstance(data, dict) and data.get("trumpBroken") is None and isinstance(data.get("trump"), bool):
            data = dict(data)
            data["trumpBroken"] = data.pop("trump")
        return data


class TrickComplete(ServerMessage):
    winner: int


class HandComplete(ServerMessage):
    score: Optional[TeamScore] = None
    tricks: Optional[TeamScore] = None


class GameEnd(ServerMessage):
    score: Optional[TeamScore] = None
    winner: Optional[int] = None


class Rainbow(ServerMessage):
    position: int


class AbortGame(ServerMessage):
    reason: Optional[str] = None


class ChatMessage(ServerMessage):
    message: str
    position: Optional[int] = None
    username: Optional[str] = None


# Reconnection

class PlayerConnection(ServerMessage):
    """Another seat dropped or came back."""
    position: int
    username: Optional[str] = None


class RejoinSnapshot(ServerMessage):
    """
    Full match state sent to a reconnecting client.

    Scores may be pre-resolved (team_*/opp_*) or raw per team (score,
    tricks). played_cards is the in-progress trick as four slots indexed
    by seat - 1, empty seats as None.
    """
    game_id: Optional[str] = Field(default=None, alias="gameId")
    position: Optional[int] = None
    current_hand: int = Field(default=0, alias="currentHand")
    trump: Optional[CardField] = None
    trump_broken: bool = Field(default=False, alias="trumpBroken")
    dealer: Optional[int] = None
    is_bidding: bool = Field(default=False, alias="isBidding")
    current_turn: Optional[int] = Field(default=None, alias="currentTurn")
    hand: List[CardField] = Field(default_factory=list)
    bids: Dict[int, BidField] = Field(default_factory=dict)
    team_tricks: Optional[int] = Field(default=None, alias="teamTricks")
    opp_tricks: Optional[int] = Field(default=None, alias="oppTricks")
    team_score: Optional[int] = Field(default=None, alias="teamScore")
    opp_score: Optional[int] = Field(default=None, alias="oppScore")
    score: Optional[TeamScore] = None
    tricks: Optional[TeamScore] = None
    played_cards: List[Optional[CardField]] = Field(default_factory=list, alias="playedCards")
    players: List[PlayerInfo] = Field(default_factory=list)
    team1_mult: Optional[int] = Field(default=None, alias="team1Mult")
    team2_mult: Optional[int] = Field(default=None, alias="team2Mult")

    @model_validator(mode="before")
    @classmethod
    def lenient_fields(cls, data: Any) -> Any:
        """Null or unreadable fields fall back to their defaults; bad cards, bids and players are skipped."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("isBidding") is None and "bidding" in data:
            data["isBidding"] = data.pop("bidding")

        if "currentHand" in data:
            data["currentHand"] = _int_or(data["currentHand"], 0)
        for key in ("trumpBroken", "isBidding"):
            if key in data:
                data[key] = _flag(data[key])
        for key in ("position", "dealer", "currentTurn", "teamTricks", "oppTricks",
                    "teamScore", "oppScore", "team1Mult", "team2Mult"):
            if key in data:
                data[key] = _int_or(data[key], None)
        if "gameId" in data and not isinstance(data["gameId"], str):
            data["gameId"] = None
        if "trump" in data:
            data["trump"] = _card_or_none(data["trump"])
        for key in ("score", "tricks"):
            if key in data:
                data[key] = _team_score_or_none(data[key])

        if "hand" in data:
            hand = data["hand"] if isinstance(data["hand"], list) else []
            data["hand"] = [card for card in map(_card_or_none, hand) if card is not None]
        if "playedCards" in data:
            # Slots stay in place: an unreadable card leaves its seat empty
            played = data["playedCards"] if isinstance(data["playedCards"], list) else []
            data["playedCards"] = [_card_or_none(card) for card in played]
        if "bids" in data:
            bids = data["bids"] if isinstance(data["bids"], dict) else {}
            data["bids"] = {
                _int_or(seat, None): bid for seat, bid in bids.items()
                if _int_or(seat, None) is not None and isinstance(bid, (int, str)) and not isinstance(bid, bool)
            }
        if "players" in data:
            players = data["players"] if isinstance(data["players"], list) else []
            data["players"] = [player for player in map(_player_or_none, players) if player is not None]
        return data

    @classmethod
    def from_payload(cls, data: Any) -> "RejoinSnapshot":
        """
        Decode a snapshot without ever rejecting it.

        Any field that still fails validation is dropped and takes its
        default, one round at a time, until the rest validates.
        """
        data = dict(data) if isinstance(data, dict) else {}
        names = {field.alias: name for name, field in cls.model_fields.items() if field.alias}
        while True:
            try:
                return cls.model_validate(data)
            except ValidationError as e:
                locs = {error["loc"][0] for error in e.errors() if error["loc"]}
                bad = (locs | {names.get(loc) for loc in locs}) & data.keys()
                if not bad:
                    raise
                logger.warning(f"Rejoin snapshot fields {sorted(map(str, bad))} unreadable, using defaults")
                data = {key: value for key, value in data.items() if key not in bad}


class RejoinFailed(ServerMessage):
    reason: Optional[str] = None


class ServerError(ServerMessage):
    """Server-side rejection. handler names the client message rejected."""
    message: Optional[str] = None
    type: Optional[str] = None
    handler: Optional[str] = None


INBOUND_MODELS = {
    ServerEvent.SIGN_IN_RESPONSE: AuthResponse,
    ServerEvent.SIGN_UP_RESPONSE: AuthResponse,
    ServerEvent.FORCE_LOGOUT: ForceLogout,
    ServerEvent.ACTIVE_GAME_FOUND: ActiveGameFound,
    ServerEvent.MAIN_ROOM_JOINED: MainRoomJoined,
    ServerEvent.MAIN_ROOM_MESSAGE: RoomChat,
    ServerEvent.MAIN_ROOM_PLAYER_JOINED: MainRoomPlayerJoined,
    ServerEvent.LOBBIES_UPDATED: LobbiesUpdated,
    ServerEvent.LOBBY_CREATED: LobbyJoined,
    ServerEvent.LOBBY_JOINED: LobbyJoined,
    ServerEvent.LOBBY_PLAYER_JOINED: LobbyUpdate,
    ServerEvent.LOBBY_PLAYER_LEFT: LobbyUpdate,
    ServerEvent.LOBBY_MESSAGE: RoomChat,
    ServerEvent.PLAYER_READY_UPDATE: LobbyUpdate,
    ServerEvent.ALL_PLAYERS_READY: AllPlayersReady,
    ServerEvent.LEFT_LOBBY: LeftLobby,
    ServerEvent.ROOM_FULL: RoomFull,
    ServerEvent.START_DRAW: StartDraw,
    ServerEvent.YOU_DREW: YouDrew,
    ServerEvent.PLAYER_DREW: PlayerDrew,
    ServerEvent.TEAMS_ANNOUNCED: TeamsAnnounced,
    ServerEvent.CREATE_UI: CreateUI,
    ServerEvent.POSITION_UPDATE: PositionUpdate,
    ServerEvent.GAME_START: GameStart,
    ServerEvent.BID_RECEIVED: BidReceived,
    ServerEvent.DONE_BIDDING: DoneBidding,
    ServerEvent.UPDATE_TURN: UpdateTurn,
    ServerEvent.CARD_PLAYED: CardPlayed,
    ServerEvent.TRICK_COMPLETE: TrickComplete,
    ServerEvent.HAND_COMPLETE: HandComplete,
    ServerEvent.GAME_END: GameEnd,
    ServerEvent.RAINBOW: Rainbow,
    ServerEvent.DESTROY_HANDS: DestroyHands,
    ServerEvent.ABORT_GAME: AbortGame,
    ServerEvent.CHAT_MESSAGE: ChatMessage,
    ServerEvent.PLAYER_DISCONNECTED: PlayerConnection,
    ServerEvent.PLAYER_RECONNECTED: PlayerConnection,
    ServerEvent.REJOIN_SUCCESS: RejoinSnapshot,
    ServerEvent.REJOIN_FAILED: RejoinFailed,
    ServerEvent.ERROR: ServerError,
}


def parse_inbound_event(name: str, data: Any) -> ServerMessage:
    """
    Decode a raw inbound payload into its message model.

    Args:
        name: Message name as sent by the server
        data: Decoded payload (a dict, or None for bare signals)

    Returns:
        Parsed message model

    Raises:
        ValueError: If the name is unknown or the payload is malformed
    """
    if not name:
        raise ValueError("Missing event name")

    try:
        event = ServerEvent(name)
    except ValueError:
        raise ValueError(f"Invalid event name: {name}")

    model = INBOUND_MODELS[event]
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid payload for {name}: expected an object")

    # Snapshots are decoded leniently; everything else is all or nothing
    decode = getattr(model, "from_payload", model.model_validate)
    try:
        return decode(data)
    except Exception as e:
        raise ValueError(f"Invalid {name} data: {str(e)}")


# Outbound messages

class ClientMessage(BaseModel):
    """Base outbound message."""
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Credentials(ClientMessage):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=100)


class CreateLobby(ClientMessage):
    name: Optional[str] = Field(default=None, max_length=50)


class JoinLobby(ClientMessage):
    lobby_id: str = Field(..., min_length=1, alias="lobbyId")


class Empty(ClientMessage):
    pass


class Draw(ClientMessage):
    num: int = Field(..., ge=0, le=53)


class PlayCard(ClientMessage):
    card: CardField
    position: int = Field(..., ge=1, le=4)


class PlayerBid(ClientMessage):
    bid: BidField
    position: int = Field(..., ge=1, le=4)


class Chat(ClientMessage):
    message: str = Field(..., min_length=1, max_length=500)


class RejoinGame(ClientMessage):
    game_id: str = Field(..., min_length=1, alias="gameId")
    username: str = Field(..., min_length=1, max_length=50)


def create_credentials(username: str, password: str) -> Credentials:
    return Credentials(username=username, password=password)


def create_play_card(card: Card, position: int) -> PlayCard:
    return PlayCard(card=card, position=position)


def create_player_bid(bid: Union[int, str], position: int) -> PlayerBid:
    """Bids go on the wire as strings, like the server's own ledger."""
    return PlayerBid(bid=str(bid), position=position)


def create_chat(message: str) -> Chat:
    return Chat(message=message)


def create_rejoin(game_id: str, username: str) -> RejoinGame:
    return RejoinGame(game_id=game_id, username=username)
