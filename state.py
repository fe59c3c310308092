#state.py
"""Fixed-size binary layouts for the three auction records.

All integers are little-endian u64, flags are one byte and identities are
32 raw bytes. Fields are packed without padding; the account holding the
record may be larger, in which case the tail is zero-filled.
"""
import struct
from dataclasses import dataclass, replace

from solders.pubkey import Pubkey

from errors import AuctionError, BiddingError

U64_MAX = 2 ** 64 - 1

GAME_ACCOUNT_SIZE = 96
PLAYER_ACCOUNT_SIZE = 32
BID_ACCOUNT_SIZE = 48

_GAME_LAYOUT = struct.Struct("<QQQQQ32sQQ?")
_PLAYER_LAYOUT = struct.Struct("<Q?QQ")
_BID_LAYOUT = struct.Struct("<32sQQ")


def _pad(packed, size):
    return packed + bytes(size - len(packed))


def _check_size(data, size):
    if len(data) != size:
        raise AuctionError(
            BiddingError.InvalidAccountData,
            f"expected {size} bytes, got {len(data)}",
        )


@dataclass(frozen=True)
class GameState:
    game_id: int
    initial_bid_amount: int
    highest_bid: int
    last_bid_time: int
    total_bids: int
    last_bidder: Pubkey
    prize_pool: int
    platform_fee_percentage: int
    game_ended: bool = False

    def pack(self):
        return _pad(
            _GAME_LAYOUT.pack(
                self.game_id,
                self.initial_bid_amount,
                self.highest_bid,
                self.last_bid_time,
                self.total_bids,
                bytes(self.last_bidder),
                self.prize_pool,
                self.platform_fee_percentage,
                self.game_ended,
            ),
            GAME_ACCOUNT_SIZE,
        )

    @classmethod
    def unpack(cls, data):
        _check_size(data, GAME_ACCOUNT_SIZE)
        fields = _GAME_LAYOUT.unpack_from(data)
        return cls(
            game_id=fields[0],
            initial_bid_amount=fields[1],
            highest_bid=fields[2],
            last_bid_time=fields[3],
            total_bids=fields[4],
            last_bidder=Pubkey.from_bytes(fields[5]),
            prize_pool=fields[6],
            platform_fee_percentage=fields[7],
            game_ended=fields[8],
        )

    def with_bid(self, bidder, amount, timestamp):
        """State after accepting one more bid."""
        return replace(
            self,
            highest_bid=amount,
            last_bid_time=timestamp,
            last_bidder=bidder,
            total_bids=self.total_bids + 1,
            prize_pool=self.prize_pool + amount,
        )

    def to_dict(self):
        return {
            "game_id": self.game_id,
            "initial_bid_amount": self.initial_bid_amount,
            "highest_bid": self.highest_bid,
            "last_bid_time": self.last_bid_time,
            "total_bids": self.total_bids,
            "last_bidder": str(self.last_bidder),
            "prize_pool": self.prize_pool,
            "platform_fee_percentage": self.platform_fee_percentage,
            "game_ended": self.game_ended,
        }


@dataclass(frozen=True)
class BidRecord:
    bidder: Pubkey
    amount: int
    timestamp: int

    def pack(self):
        return _pad(
            _BID_LAYOUT.pack(bytes(self.bidder), self.amount, self.timestamp),
            BID_ACCOUNT_SIZE,
        )

    @classmethod
    def unpack(cls, data):
        _check_size(data, BID_ACCOUNT_SIZE)
        bidder, amount, timestamp = _BID_LAYOUT.unpack_from(data)
        return cls(Pubkey.from_bytes(bidder), amount, timestamp)

    def to_dict(self):
        return {
            "bidder": str(self.bidder),
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class PlayerState:
    total_bid_amount: int
    safe: bool = False
    royalty_earned: int = 0
    bid_count: int = 0

    def pack(self):
        return _pad(
            _PLAYER_LAYOUT.pack(
                self.total_bid_amount, self.safe, self.royalty_earned, self.bid_count
            ),
            PLAYER_ACCOUNT_SIZE,
        )

    @classmethod
    def unpack(cls, data):
        _check_size(data, PLAYER_ACCOUNT_SIZE)
        return cls(*_PLAYER_LAYOUT.unpack_from(data))

    def credited(self, amount):
        """Mark the player safe and add ``amount`` to their earnings."""
        return replace(self, safe=True, royalty_earned=self.royalty_earned + amount)

    def to_dict(self):
        return {
            "total_bid_amount": self.total_bid_amount,
            "safe": self.safe,
            "royalty_earned": self.royalty_earned,
            "bid_count": self.bid_count,
        }
