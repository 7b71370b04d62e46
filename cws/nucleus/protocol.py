# cws/nucleus/protocol.py
"""
Pydantic models for every frame exchanged over the control channel.

Inbound frames are parsed into `Request` and then into one of the typed
request models; outbound frames are `Frame` subclasses serialized with
`to_json()`, which drops unset optional fields (notably `id`).
"""
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# -------------------------
# Inbound (client -> server)
# -------------------------

class Request(BaseModel):
    """The generic envelope. Unknown fields are kept so typed models can re-validate them."""
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    id: Any = None


class AuthResponseRequest(Request):
    # Presence is checked by AuthService, so both stay optional here.
    nonce: Any = None
    signature: Any = None


class CommandRequest(Request):
    command: str


class PlaceholderRequest(Request):
    placeholder: str
    player: str


class PlayerOnlineRequest(Request):
    player: str


class OnlinePlayersRequest(Request):
    pass


class BroadcastRequest(Request):
    message: str


class PlayerMessageRequest(Request):
    message: str
    player: str


# -------------------------
# Outbound (server -> client)
# -------------------------

class Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    id: Any = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class AuthChallenge(Frame):
    type: Literal["authChallenge"] = "authChallenge"
    nonce: str
    public_key: str = Field(..., alias="publicKey")


class AuthResult(Frame):
    type: Literal["authResponse"] = "authResponse"
    status: Literal["success", "failed"]
    message: Optional[str] = None


class Pong(Frame):
    type: Literal["pong"] = "pong"


class ErrorFrame(Frame):
    type: Literal["error"] = "error"
    message: str


class CommandResponse(Frame):
    type: Literal["commandResponse"] = "commandResponse"
    success: bool


class PlaceholderResponse(Frame):
    type: Literal["placeholderResponse"] = "placeholderResponse"
    placeholder: str
    result: str
    player: str


class PlayerOnlineResponse(Frame):
    type: Literal["playerOnlineResponse"] = "playerOnlineResponse"
    player: str
    online: bool


class OnlinePlayersResponse(Frame):
    type: Literal["onlinePlayersResponse"] = "onlinePlayersResponse"
    players: List[str]
    count: int


class BroadcastResponse(Frame):
    type: Literal["broadcastResponse"] = "broadcastResponse"
    success: bool = True


class PlayerMessageResponse(Frame):
    type: Literal["playerMessageResponse"] = "playerMessageResponse"
    success: bool
    player: str
