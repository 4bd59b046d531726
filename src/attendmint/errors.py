"""attendmint exception hierarchy."""


class AttendmintError(Exception):
    """Base exception for all attendmint errors."""

    def __init__(self, message: str = "", code: str = "ATTENDMINT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# ── Lookup & authorization ─────────────────────────────────


class NotFoundError(AttendmintError):
    """Raised when a referenced event, ticket, or attendance record is missing."""

    def __init__(self, message: str = "Record not found"):
        super().__init__(message, code="NOT_FOUND")


class NotOwnerError(AttendmintError):
    """Raised when the acting identity does not own the ticket."""

    def __init__(self, message: str = "Ticket is not owned by the acting user"):
        super().__init__(message, code="NOT_OWNER")


class NotAuthenticatedError(AttendmintError):
    """Raised when an operation needs a current user and none is signed in."""

    def __init__(self, message: str = "No authenticated user"):
        super().__init__(message, code="NOT_AUTHENTICATED")


# ── Inventory ──────────────────────────────────────────────


class SoldOutError(AttendmintError):
    """Raised when an event has no remaining capacity."""

    def __init__(self, message: str = "Event is sold out"):
        super().__init__(message, code="SOLD_OUT")


class EventNotPublishedError(AttendmintError):
    """Raised when purchasing a ticket for an unpublished event."""

    def __init__(self, message: str = "Event is not published"):
        super().__init__(message, code="NOT_PUBLISHED")


class CapacityError(AttendmintError):
    """Raised when capacity would drop below the number of tickets sold."""

    def __init__(self, message: str = "Capacity cannot be below tickets sold"):
        super().__init__(message, code="CAPACITY")


# ── Ticket lifecycle ───────────────────────────────────────


class AlreadyUsedError(AttendmintError):
    """Raised when checking in a ticket that has already been used."""

    def __init__(self, message: str = "Ticket has already been used"):
        super().__init__(message, code="ALREADY_USED")


class TicketNotActiveError(AttendmintError):
    """Raised when a transition is attempted on a cancelled or transferred ticket."""

    def __init__(self, message: str = "Ticket is not active"):
        super().__init__(message, code="NOT_ACTIVE")


class MintAddressSetError(AttendmintError):
    """Raised when a ticket that already carries a mint address is given another."""

    def __init__(self, message: str = "Ticket already has a mint address"):
        super().__init__(message, code="MINT_ADDRESS_SET")


class InvalidQRCodeError(AttendmintError):
    """Raised when a scanned QR payload is malformed or for another event."""

    def __init__(self, message: str = "Invalid QR code"):
        super().__init__(message, code="INVALID_QR")


# ── Wallet ─────────────────────────────────────────────────


class WalletError(AttendmintError):
    """Raised when a wallet is disconnected or rejects a transaction."""

    def __init__(self, message: str = "Wallet error"):
        super().__init__(message, code="WALLET")


# ── Minting ────────────────────────────────────────────────


class NotEligibleError(AttendmintError):
    """Raised when minting is requested for an event without NFTs enabled."""

    def __init__(self, message: str = "Event does not issue attendance NFTs"):
        super().__init__(message, code="NOT_ELIGIBLE")


class UploadFailedError(AttendmintError):
    """Raised by content storage adapters. Recovered by the inline fallback."""

    def __init__(self, message: str = "Content upload failed"):
        super().__init__(message, code="UPLOAD_FAILED")


class MintError(AttendmintError):
    """Base class for failures of the mint pipeline."""

    def __init__(self, message: str = "Mint failed", code: str = "MINT_ERROR"):
        super().__init__(message, code=code)


class MintFailedError(MintError):
    """Raised when the mint capability rejects or errors on a mint."""

    def __init__(self, message: str = "Mint failed"):
        super().__init__(message, code="MINT_FAILED")


class NoWalletError(MintFailedError):
    """Raised when the attendee has no wallet address usable as a recipient."""

    def __init__(self, message: str = "Attendee has no wallet address"):
        super().__init__(message)
        self.code = "NO_WALLET"


class MintTimeoutError(MintError):
    """Raised when the upload-and-mint pipeline exceeds its time limit."""

    def __init__(self, message: str = "Mint timed out"):
        super().__init__(message, code="MINT_TIMEOUT")


class MintInProgressError(MintError):
    """Raised when another worker holds a live claim on the same record."""

    def __init__(self, message: str = "Mint already in progress"):
        super().__init__(message, code="MINT_IN_PROGRESS")
