#errors.py
from enum import IntEnum


class BiddingError(IntEnum):
    """Failure codes returned to callers. Values are stable; only append."""

    InsufficientInitialBid = 0
    InvalidGameAccount = 1
    InvalidPlayerAccount = 2
    InvalidBidAccount = 3
    GameEnded = 4
    InsufficientBidAmount = 5
    InvalidNewPlayerAccount = 6
    InvalidNewBidAccount = 7
    NoBidsFound = 8
    NoWinnerFound = 9
    BidderAccountNotFound = 10
    SystemProgramNotFound = 11
    FailedToFetchBidHistory = 12
    BidCountMismatch = 13
    FailedToDeserializeBidData = 14
    InsufficientFunds = 15
    RoyaltyTransferFailed = 16
    AccountNotFound = 17
    BidAccountNotInitialized = 18
    BidAccountNotFound = 19
    PlayerAccountNotFound = 20
    InvalidInstruction = 21
    InvalidAccountData = 22
    AccountAlreadyInUse = 23
    GameNotExpired = 24
    InvalidPlatformAccount = 25


MESSAGES = {
    BiddingError.InsufficientInitialBid: "Initial bid amount is below the minimum",
    BiddingError.InvalidGameAccount: "Invalid game account",
    BiddingError.InvalidPlayerAccount: "Invalid player account",
    BiddingError.InvalidBidAccount: "Invalid bid account",
    BiddingError.GameEnded: "Game has already ended",
    BiddingError.InsufficientBidAmount: "Bid amount must be at least double the highest bid",
    BiddingError.InvalidNewPlayerAccount: "Invalid new player account",
    BiddingError.InvalidNewBidAccount: "Invalid new bid account",
    BiddingError.NoBidsFound: "No bids found in game",
    BiddingError.NoWinnerFound: "No winner found",
    BiddingError.BidderAccountNotFound: "Bidder account not found",
    BiddingError.SystemProgramNotFound: "System program account not found",
    BiddingError.FailedToFetchBidHistory: "Failed to fetch bid history",
    BiddingError.BidCountMismatch: "Bid count not matched",
    BiddingError.FailedToDeserializeBidData: "Failed to deserialize bid account data",
    BiddingError.InsufficientFunds: "Account has insufficient funds",
    BiddingError.RoyaltyTransferFailed: "Royalty transfer failed",
    BiddingError.AccountNotFound: "Account not found",
    BiddingError.BidAccountNotInitialized: "Bid account is not initialized",
    BiddingError.BidAccountNotFound: "Bid account not found",
    BiddingError.PlayerAccountNotFound: "Player account not found",
    BiddingError.InvalidInstruction: "Invalid instruction",
    BiddingError.InvalidAccountData: "Invalid account data",
    BiddingError.AccountAlreadyInUse: "Account address already in use",
    BiddingError.GameNotExpired: "Bidding window has not closed yet",
    BiddingError.InvalidPlatformAccount: "Platform account does not match the configured operator",
}


class AuctionError(Exception):
    """Raised by the auction core; the whole call is aborted."""

    def __init__(self, error, detail=None):
        self.error = BiddingError(error)
        self.detail = detail
        message = MESSAGES[self.error]
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def code(self):
        return int(self.error)

    def to_dict(self):
        return {"msg": str(self), "code": self.code, "error": self.error.name}
