"""
Control-channel messages.

Every control message is a JSON object tagged by its "type" field. Client
messages go to the server, which relays them to the addressed peer as the
matching server message.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from dropwire.transfer.errors import ProtocolParseError


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


# --- Client -> Server ---

class JoinMessage(_Message):
    type: Literal["JOIN"] = "JOIN"
    username: str


class FileOfferMessage(_Message):
    type: Literal["FILE_OFFER"] = "FILE_OFFER"
    to: str
    file_id: str
    filename: str
    size: int
    chunk_size: int
    checksum: str


class FileAcceptMessage(_Message):
    type: Literal["FILE_ACCEPT"] = "FILE_ACCEPT"
    from_user: str = Field(alias="from")
    file_id: str


class FileRejectMessage(_Message):
    type: Literal["FILE_REJECT"] = "FILE_REJECT"
    from_user: str = Field(alias="from")
    file_id: str


class FileChunkAckMessage(_Message):
    """Sent by the receiver per chunk; relayed back to the sender by the server."""
    type: Literal["FILE_CHUNK_ACK"] = "FILE_CHUNK_ACK"
    file_id: str
    chunk_index: int


# --- Server -> Client ---

class ServerConfigMessage(_Message):
    type: Literal["SERVER_CONFIG"] = "SERVER_CONFIG"
    max_file_size: int
    chunk_size: int = Field(gt=0)


class UserJoinedMessage(_Message):
    type: Literal["USER_JOINED"] = "USER_JOINED"
    username: str
    users: list[str]


class UserLeftMessage(_Message):
    type: Literal["USER_LEFT"] = "USER_LEFT"
    username: str
    users: list[str]


class FileOfferReceivedMessage(_Message):
    type: Literal["FILE_OFFER_RECEIVED"] = "FILE_OFFER_RECEIVED"
    from_user: str = Field(alias="from")
    file_id: str
    filename: str
    size: int = Field(ge=0)
    checksum: str


class FileAcceptedMessage(_Message):
    type: Literal["FILE_ACCEPTED"] = "FILE_ACCEPTED"
    file_id: str
    to: str


class FileRejectedMessage(_Message):
    type: Literal["FILE_REJECTED"] = "FILE_REJECTED"
    file_id: str


class FileCompleteMessage(_Message):
    type: Literal["FILE_COMPLETE"] = "FILE_COMPLETE"
    file_id: str


class FileErrorMessage(_Message):
    type: Literal["FILE_ERROR"] = "FILE_ERROR"
    file_id: str
    error: str


class ErrorMessage(_Message):
    type: Literal["ERROR"] = "ERROR"
    message: str


ClientMessage = Annotated[
    Union[
        JoinMessage,
        FileOfferMessage,
        FileAcceptMessage,
        FileRejectMessage,
        FileChunkAckMessage,
    ],
    Field(discriminator="type"),
]

ServerMessage = Annotated[
    Union[
        ServerConfigMessage,
        UserJoinedMessage,
        UserLeftMessage,
        FileOfferReceivedMessage,
        FileAcceptedMessage,
        FileRejectedMessage,
        FileChunkAckMessage,
        FileCompleteMessage,
        FileErrorMessage,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]

_client_adapter = TypeAdapter(ClientMessage)
_server_adapter = TypeAdapter(ServerMessage)


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Parse a server->client text frame. Raises ProtocolParseError."""
    try:
        return _server_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolParseError(f"Invalid server message: {e}") from e


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Parse a client->server text frame. Raises ProtocolParseError."""
    try:
        return _client_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolParseError(f"Invalid client message: {e}") from e
