#settlement.py
"""Settlement: the one-time transition that ends a game and empties escrow.

Short games (fewer than five bids) pay a flat fee on the whole pot and the
rest to the last bidder. Longer games refund every bid placed before the
last five, topped up with a weighted share of the royalty pool; the fee is
taken on the last five bids and whatever remains in escrow above the rent
floor goes to the winner.
"""
import logging
from dataclasses import dataclass, replace

from addressing import bid_address, player_address, to_pubkey
from errors import AuctionError, BiddingError
from ledger import minimum_balance
from state import GAME_ACCOUNT_SIZE, BidRecord, PlayerState

logger = logging.getLogger(__name__)

PLATFORM_FEE_PERCENTAGE = 10
PROTECTED_TAIL = 5


@dataclass(frozen=True)
class RoyaltyPayout:
    seq: int
    bidder: object
    refund: int
    royalty: int

    @property
    def total(self):
        return self.refund + self.royalty

    def to_dict(self):
        return {
            "seq": self.seq,
            "bidder": str(self.bidder),
            "refund": self.refund,
            "royalty": self.royalty,
        }


@dataclass(frozen=True)
class SettlementReport:
    game_id: int
    total_bids: int
    platform_fee: int
    winner: object
    winner_payout: int
    royalty_pool: int = 0
    royalties: tuple = ()

    def to_dict(self):
        return {
            "game_id": self.game_id,
            "total_bids": self.total_bids,
            "platform_fee": self.platform_fee,
            "winner": str(self.winner),
            "winner_payout": self.winner_payout,
            "royalty_pool": self.royalty_pool,
            "royalties": [payout.to_dict() for payout in self.royalties],
        }


def fetch_bid_history(ledger, program_id, game_id, total_bids, bid_addresses):
    """Rebuild the bid history from the supplied bid records.

    ``bid_addresses[seq - 1]`` must be the derived address of bid ``seq``
    for every sequence number; nothing is looked up on the caller's behalf.
    """
    if total_bids == 0:
        raise AuctionError(BiddingError.NoBidsFound)
    owner = str(to_pubkey(program_id))
    history = []
    for seq in range(1, total_bids + 1):
        if seq > len(bid_addresses):
            raise AuctionError(BiddingError.BidAccountNotFound, f"bid #{seq} not supplied")
        expected = bid_address(program_id, game_id, seq)
        if to_pubkey(bid_addresses[seq - 1]) != expected:
            raise AuctionError(BiddingError.InvalidBidAccount, f"bid #{seq}")
        account = ledger.get(expected)
        if account is None:
            raise AuctionError(BiddingError.BidAccountNotFound, f"bid #{seq} at {expected}")
        if account.owner != owner or not any(account.data):
            raise AuctionError(BiddingError.BidAccountNotInitialized, f"bid #{seq}")
        try:
            history.append(BidRecord.unpack(account.data))
        except AuctionError as exc:
            raise AuctionError(BiddingError.FailedToDeserializeBidData, f"bid #{seq}") from exc
    return history


def royalty_shares(amounts, royalty_pool):
    """Split ``royalty_pool`` over ``amounts``, oldest bid weighted heaviest.

    The bid at index ``i`` of ``n`` has weight ``n - i`` and receives
    ``weight * amount * pool // (total_weight * total_amount)``. Shares are
    truncated, so their sum never exceeds the pool.
    """
    count = len(amounts)
    if count == 0:
        return []
    weights = [count - i for i in range(count)]
    denominator = sum(weights) * sum(amounts)
    if denominator == 0:
        return [0] * count
    return [w * a * royalty_pool // denominator for w, a in zip(weights, amounts)]


def _credit_player(ledger, program_id, game_id, bidder, seq, amount, accounts):
    address = accounts.player(player_address(program_id, game_id, bidder, seq))
    account = ledger.require(address, BiddingError.PlayerAccountNotFound)
    if account.owner != str(to_pubkey(program_id)):
        raise AuctionError(BiddingError.InvalidPlayerAccount, str(address))
    player = PlayerState.unpack(account.data)
    ledger.write(address, player.credited(amount).pack())


def end_game(ledger, program_id, game, state, payees):
    """Pay out a game and mark it ended.

    ``payees`` is the :class:`SettlementAccounts` supplied with the call.
    Returns ``(ended_state, report)``. Any failure raises
    :class:`AuctionError` and leaves the caller to roll back.
    """
    history = fetch_bid_history(
        ledger, program_id, state.game_id, state.total_bids, payees.bids
    )
    winner_bid = history[-1]

    if len(history) < PROTECTED_TAIL:
        platform_fee = state.prize_pool * PLATFORM_FEE_PERCENTAGE // 100
        remaining = state.prize_pool - platform_fee
        winner = payees.bidder(winner_bid.bidder)

        ledger.transfer(game, payees.platform, platform_fee)
        ledger.transfer(game, winner, remaining)
        report = SettlementReport(
            game_id=state.game_id,
            total_bids=state.total_bids,
            platform_fee=platform_fee,
            winner=winner,
            winner_payout=remaining,
        )
    else:
        last_five = history[-PROTECTED_TAIL:]
        platform_fee = sum(bid.amount for bid in last_five) * state.platform_fee_percentage // 100
        royalty_pool = history[-4].amount
        eligible = history[:-PROTECTED_TAIL]
        shares = royalty_shares([bid.amount for bid in eligible], royalty_pool)

        royalties = []
        for index, (bid, share) in enumerate(zip(eligible, shares)):
            seq = index + 1
            bidder = payees.bidder(bid.bidder)
            ledger.transfer(game, bidder, bid.amount + share, error=BiddingError.RoyaltyTransferFailed)
            _credit_player(ledger, program_id, state.game_id, bid.bidder, seq, share, payees)
            royalties.append(RoyaltyPayout(seq=seq, bidder=bidder, refund=bid.amount, royalty=share))
            logger.info("game %d: bid #%d refunded %d + royalty %d", state.game_id, seq, bid.amount, share)

        winner = payees.bidder(winner_bid.bidder)
        ledger.transfer(game, payees.platform, platform_fee)

        residual = ledger.balance(game) - minimum_balance(GAME_ACCOUNT_SIZE)
        if residual < 0:
            raise AuctionError(BiddingError.InsufficientFunds, f"escrow short by {-residual}")
        ledger.transfer(game, winner, residual)
        _credit_player(ledger, program_id, state.game_id, winner_bid.bidder, state.total_bids, residual, payees)

        report = SettlementReport(
            game_id=state.game_id,
            total_bids=state.total_bids,
            platform_fee=platform_fee,
            winner=winner,
            winner_payout=residual,
            royalty_pool=royalty_pool,
            royalties=tuple(royalties),
        )

    ended = replace(state, game_ended=True)
    ledger.write(game, ended.pack())
    logger.info(
        "game %d settled: fee %d, winner %s paid %d",
        state.game_id, report.platform_fee, report.winner, report.winner_payout,
    )
    return ended, report
