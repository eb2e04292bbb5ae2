"""Exception classes for rendezvous, negotiation and transfer."""


class SwyftError(Exception):
    """
    Base exception class for all Swyft errors.
    """
    default_message = "Swyft error"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


# === Rendezvous ===

class RendezvousError(SwyftError):
    """
    Base class for failures returned by the rendezvous service.
    """
    default_message = "Rendezvous failed"


class RoomNotFound(RendezvousError):
    """
    Raised when a PIN does not name a live room.
    """
    default_message = "Room not found"


class RoomFull(RendezvousError):
    """
    Raised when a second party tries to join a room.
    """
    default_message = "Room full"


class AnswerAlreadySubmitted(RendezvousError):
    """
    Raised when an answer is submitted for a room that already has one.
    """
    default_message = "Answer already submitted"


class PinExhausted(RendezvousError):
    """
    Raised when no unused PIN could be allocated.
    """
    default_message = "No PIN available"


# === Transfer ===

class TransferError(SwyftError):
    """
    Base class for transfer failures.
    """
    default_message = "Transfer failed"


class ChannelNotReady(TransferError):
    default_message = "Connection not ready"


class NoFileSelected(TransferError):
    default_message = "No file selected"


class ReadFailure(TransferError):
    default_message = "Error reading file"


class SendFailure(TransferError):
    default_message = "Error sending file"


class TransferStateError(TransferError):
    """
    Raised when an operation is not valid in the session's current state.
    """
    default_message = "Invalid transfer state"


class SizeMismatch(TransferError):
    default_message = "Received size does not match declared size"


class MalformedControlMessage(SwyftError):
    """
    Raised when a text message is neither a sentinel nor valid metadata.

    Receivers ignore it so newer peers can add message types.
    """
    default_message = "Malformed control message"


# === Negotiation ===

class NegotiationError(SwyftError):
    default_message = "Negotiation failed"


class InvalidConnectionCode(NegotiationError):
    default_message = "Invalid connection code"


class NegotiationTimeout(NegotiationError):
    default_message = "Timed out waiting for peer"


ERRORS_BY_MESSAGE = {
    "Invalid PIN": RoomNotFound,
    RoomNotFound.default_message: RoomNotFound,
    RoomFull.default_message: RoomFull,
    AnswerAlreadySubmitted.default_message: AnswerAlreadySubmitted,
    PinExhausted.default_message: PinExhausted,
}


def rendezvous_error_from_message(message: str) -> RendezvousError:
    """Map a failure message from the signaling wire back to an exception."""
    error_class = ERRORS_BY_MESSAGE.get(message, RendezvousError)
    return error_class(message)
