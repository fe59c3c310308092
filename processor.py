#processor.py
"""The bidding state machine.

``CreateGame`` opens a game with its first bid, ``PlaceBid`` accepts a bid
that at least doubles the leader or, once the bidding window has closed,
settles the game instead, and ``SettleIfExpired`` settles without pretending
to bid. Every call is all-or-nothing: use :func:`execute` to run one and
commit, or roll back on failure.
"""
import logging
from dataclasses import dataclass

from addressing import bid_address, game_address, player_address, to_pubkey
from errors import AuctionError, BiddingError
from instructions import CreateGame, PlaceBid, SettleIfExpired
from settlement import PLATFORM_FEE_PERCENTAGE, end_game
from state import (
    BID_ACCOUNT_SIZE,
    GAME_ACCOUNT_SIZE,
    PLAYER_ACCOUNT_SIZE,
    U64_MAX,
    BidRecord,
    GameState,
    PlayerState,
)

logger = logging.getLogger(__name__)

TIMEOUT_SECONDS = 300
MIN_INITIAL_BID = 14_000_000


@dataclass(frozen=True)
class Outcome:
    """What a call did: the resulting game state plus the new bid or the payout."""

    state: GameState
    bid: BidRecord = None
    settlement: object = None

    @property
    def settled(self):
        return self.settlement is not None


class BiddingProcessor:
    def __init__(self, ledger, program_id, platform, timeout_seconds=TIMEOUT_SECONDS, min_initial_bid=MIN_INITIAL_BID):
        self.ledger = ledger
        self.program_id = to_pubkey(program_id)
        self.platform = to_pubkey(platform)
        self.timeout_seconds = timeout_seconds
        self.min_initial_bid = min_initial_bid

    def process(self, instruction, accounts):
        if isinstance(instruction, CreateGame):
            return self.create_game(accounts, instruction.game_id, instruction.initial_bid_amount)
        if isinstance(instruction, PlaceBid):
            return self.place_bid(accounts, instruction.bid_amount, instruction.bid_count)
        if isinstance(instruction, SettleIfExpired):
            return self.settle_if_expired(accounts)
        raise AuctionError(BiddingError.InvalidInstruction, type(instruction).__name__)

    def create_game(self, accounts, game_id, initial_bid_amount):
        if initial_bid_amount < self.min_initial_bid:
            raise AuctionError(
                BiddingError.InsufficientInitialBid,
                f"{initial_bid_amount} < {self.min_initial_bid}",
            )
        payer = to_pubkey(accounts.payer)
        if to_pubkey(accounts.game) != game_address(self.program_id, game_id):
            raise AuctionError(BiddingError.InvalidGameAccount)
        if to_pubkey(accounts.player) != player_address(self.program_id, game_id, payer, 1):
            raise AuctionError(BiddingError.InvalidPlayerAccount)
        if to_pubkey(accounts.bid) != bid_address(self.program_id, game_id, 1):
            raise AuctionError(BiddingError.InvalidBidAccount)

        self.ledger.create_account(payer, accounts.game, GAME_ACCOUNT_SIZE, self.program_id)
        self.ledger.create_account(payer, accounts.player, PLAYER_ACCOUNT_SIZE, self.program_id)
        self.ledger.create_account(payer, accounts.bid, BID_ACCOUNT_SIZE, self.program_id)

        now = self.ledger.now()
        state = GameState(
            game_id=game_id,
            initial_bid_amount=initial_bid_amount,
            highest_bid=initial_bid_amount,
            last_bid_time=now,
            total_bids=1,
            last_bidder=payer,
            prize_pool=initial_bid_amount,
            platform_fee_percentage=PLATFORM_FEE_PERCENTAGE,
            game_ended=False,
        )
        bid = BidRecord(bidder=payer, amount=initial_bid_amount, timestamp=now)
        player = PlayerState(total_bid_amount=initial_bid_amount, bid_count=1)

        self.ledger.write(accounts.game, state.pack())
        self.ledger.write(accounts.player, player.pack())
        self.ledger.write(accounts.bid, bid.pack())
        self.ledger.transfer(payer, accounts.game, initial_bid_amount)

        logger.info("game %d created by %s with %d", game_id, payer, initial_bid_amount)
        return Outcome(state=state, bid=bid)

    def place_bid(self, accounts, bid_amount, bid_count):
        state = self._load_game(accounts.game)
        if state.game_ended:
            raise AuctionError(BiddingError.GameEnded, f"game {state.game_id}")

        now = self.ledger.now()
        if self._expired(state, now):
            logger.info("game %d: bidding window closed, settling", state.game_id)
            return self._settle(accounts.game, state, accounts.settlement)

        if bid_amount < 2 * state.highest_bid:
            raise AuctionError(
                BiddingError.InsufficientBidAmount,
                f"{bid_amount} < 2 * {state.highest_bid}",
            )
        new_seq = state.total_bids + 1
        if bid_count != new_seq:
            raise AuctionError(BiddingError.BidCountMismatch, f"expected {new_seq}, got {bid_count}")

        bidder = to_pubkey(accounts.bidder)
        if to_pubkey(accounts.new_player) != player_address(self.program_id, state.game_id, bidder, new_seq):
            raise AuctionError(BiddingError.InvalidNewPlayerAccount)
        if to_pubkey(accounts.new_bid) != bid_address(self.program_id, state.game_id, new_seq):
            raise AuctionError(BiddingError.InvalidNewBidAccount)
        if state.prize_pool + bid_amount > U64_MAX:
            raise AuctionError(BiddingError.InvalidInstruction, "prize pool would overflow")

        self.ledger.create_account(bidder, accounts.new_player, PLAYER_ACCOUNT_SIZE, self.program_id)
        self.ledger.create_account(bidder, accounts.new_bid, BID_ACCOUNT_SIZE, self.program_id)

        state = state.with_bid(bidder, bid_amount, now)
        bid = BidRecord(bidder=bidder, amount=bid_amount, timestamp=now)
        player = PlayerState(total_bid_amount=bid_amount, bid_count=new_seq)

        self.ledger.write(accounts.game, state.pack())
        self.ledger.write(accounts.new_player, player.pack())
        self.ledger.write(accounts.new_bid, bid.pack())
        self.ledger.transfer(bidder, accounts.game, bid_amount)

        logger.info("game %d: bid #%d of %d by %s", state.game_id, new_seq, bid_amount, bidder)
        return Outcome(state=state, bid=bid)

    def settle_if_expired(self, accounts):
        state = self._load_game(accounts.game)
        if state.game_ended:
            raise AuctionError(BiddingError.GameEnded, f"game {state.game_id}")
        if not self._expired(state, self.ledger.now()):
            raise AuctionError(BiddingError.GameNotExpired, f"game {state.game_id}")
        return self._settle(accounts.game, state, accounts.settlement)

    def _expired(self, state, now):
        # A clock behind the last bid counts as no time elapsed.
        return max(0, now - state.last_bid_time) > self.timeout_seconds

    def _settle(self, game, state, payees):
        if to_pubkey(payees.platform) != self.platform:
            raise AuctionError(BiddingError.InvalidPlatformAccount, str(payees.platform))
        ended, report = end_game(self.ledger, self.program_id, game, state, payees)
        return Outcome(state=ended, settlement=report)

    def _load_game(self, address):
        account = self.ledger.require(address, BiddingError.InvalidGameAccount, for_update=True)
        if account.owner != str(self.program_id):
            raise AuctionError(BiddingError.InvalidGameAccount, f"{address} is not a game account")
        if len(account.data) != GAME_ACCOUNT_SIZE:
            raise AuctionError(BiddingError.InvalidAccountData, f"game account holds {len(account.data)} bytes")
        state = GameState.unpack(account.data)
        if to_pubkey(address) != game_address(self.program_id, state.game_id):
            raise AuctionError(BiddingError.InvalidGameAccount, f"{address} is not game {state.game_id}")
        return state


def execute(processor, instruction, accounts):
    """Run one instruction as a single transaction."""
    session = processor.ledger.session
    try:
        outcome = processor.process(instruction, accounts)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return outcome
