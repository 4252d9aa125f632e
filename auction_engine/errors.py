"""Failure kinds raised by the auction lifecycle engine.

Every error the HTTP layer can surface derives from ``AuctionError`` and
carries a stable ``code`` plus the status code it maps to.
``DispatchFailure`` is the exception: it is only ever created and logged
inside the notification dispatcher.
"""
from auction_engine.services.money import format_money


class AuctionError(Exception):
    code = "AuctionError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFound(AuctionError):
    code = "NotFound"
    status_code = 404


class Forbidden(AuctionError):
    code = "Forbidden"
    status_code = 403


class InvalidAuction(AuctionError):
    code = "InvalidAuction"


class SelfBid(AuctionError):
    code = "SelfBid"

    def __init__(self, message: str = "Cannot bid on your own auction"):
        super().__init__(message)


class AuctionClosed(AuctionError):
    code = "AuctionClosed"


class BidTooLow(AuctionError):
    code = "BidTooLow"

    def __init__(self, minimum: float, message: str | None = None):
        super().__init__(message or f"Bid must be at least {format_money(minimum)}")
        self.minimum = minimum

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["minimum"] = self.minimum
        return data


class BelowMinimum(BidTooLow):
    """Amount under the auction's next acceptable bid."""


class StaleBid(BidTooLow):
    """Amount not above the bidder's own standing bid.

    With a positive increment the minimum already sits above every
    standing bid, so the ledger only raises this as a guard.
    """

    def __init__(self, minimum: float, own_amount: float):
        super().__init__(
            minimum,
            f"Your new bid must be higher than your current bid of {format_money(own_amount)}",
        )
        self.own_amount = own_amount


class InvalidTransition(AuctionError):
    code = "InvalidTransition"
    status_code = 409

    def __init__(self, current: str, target: str, reason: str):
        super().__init__(f"Cannot move auction from {current} to {target}: {reason}")
        self.current = current
        self.target = target
        self.reason = reason


class PaymentMismatch(AuctionError):
    code = "PaymentMismatch"
    status_code = 409

    def __init__(self, expected: float, received: float):
        super().__init__(
            f"Payment of {format_money(received)} does not match the winning bid of {format_money(expected)}"
        )
        self.expected = expected
        self.received = received

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["expected"] = self.expected
        return data


class DispatchFailure(Exception):
    def __init__(self, channel: str, user_id: int, kind: str, cause: BaseException):
        super().__init__(f"{channel} delivery of {kind} to user {user_id} failed: {cause}")
        self.channel = channel
        self.user_id = user_id
        self.kind = kind
        self.cause = cause
