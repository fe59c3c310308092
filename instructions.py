#instructions.py
"""Operations accepted by the auction and the account sets they run against.

Each operation names the records it needs as typed fields instead of a flat
account list. The processor re-derives every address it is handed, so these
objects carry no authority of their own; the ``*_accounts`` helpers at the
bottom build them the way a client would.
"""
from dataclasses import dataclass, field

from solders.pubkey import Pubkey

from addressing import bid_address, game_address, player_address, to_pubkey
from errors import AuctionError, BiddingError
from state import BID_ACCOUNT_SIZE, GAME_ACCOUNT_SIZE, U64_MAX, BidRecord, GameState


def _check_u64(name, value):
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= U64_MAX:
        raise AuctionError(BiddingError.InvalidInstruction, f"{name} must be a u64, got {value!r}")


@dataclass(frozen=True)
class CreateGame:
    game_id: int
    initial_bid_amount: int

    def __post_init__(self):
        _check_u64("game_id", self.game_id)
        _check_u64("initial_bid_amount", self.initial_bid_amount)


@dataclass(frozen=True)
class PlaceBid:
    bid_amount: int
    bid_count: int

    def __post_init__(self):
        _check_u64("bid_amount", self.bid_amount)
        _check_u64("bid_count", self.bid_count)


@dataclass(frozen=True)
class SettleIfExpired:
    pass


@dataclass(frozen=True)
class SettlementAccounts:
    """Everything settlement may read or pay: history, players, bidders."""

    platform: Pubkey
    bids: tuple = ()
    players: frozenset = field(default_factory=frozenset)
    bidders: frozenset = field(default_factory=frozenset)

    def bidder(self, identity):
        if identity not in self.bidders:
            raise AuctionError(BiddingError.BidderAccountNotFound, str(identity))
        return identity

    def player(self, address):
        if address not in self.players:
            raise AuctionError(BiddingError.PlayerAccountNotFound, str(address))
        return address


@dataclass(frozen=True)
class CreateGameAccounts:
    game: Pubkey
    payer: Pubkey
    player: Pubkey
    bid: Pubkey


@dataclass(frozen=True)
class PlaceBidAccounts:
    game: Pubkey
    bidder: Pubkey
    new_bid: Pubkey
    new_player: Pubkey
    settlement: SettlementAccounts


@dataclass(frozen=True)
class SettleAccounts:
    game: Pubkey
    settlement: SettlementAccounts


def create_game_accounts(program_id, game_id, payer):
    payer = to_pubkey(payer)
    return CreateGameAccounts(
        game=game_address(program_id, game_id),
        payer=payer,
        player=player_address(program_id, game_id, payer, 1),
        bid=bid_address(program_id, game_id, 1),
    )


def read_game(ledger, program_id, game_id):
    data = ledger.read(game_address(program_id, game_id))
    if len(data) != GAME_ACCOUNT_SIZE:
        return None
    return GameState.unpack(data)


def read_history(ledger, program_id, game_id, total_bids):
    """Yield ``(seq, bid_address, BidRecord or None)`` for a game's bids."""
    for seq in range(1, total_bids + 1):
        address = bid_address(program_id, game_id, seq)
        data = ledger.read(address)
        record = BidRecord.unpack(data) if len(data) == BID_ACCOUNT_SIZE else None
        yield seq, address, record


def settlement_accounts(ledger, program_id, game_id, platform):
    """Collect every bid, player and bidder address settlement will need."""
    game = read_game(ledger, program_id, game_id)
    bids, players, bidders = [], set(), set()
    if game is not None:
        for seq, address, record in read_history(ledger, program_id, game_id, game.total_bids):
            bids.append(address)
            if record is None:
                continue
            bidders.add(record.bidder)
            players.add(player_address(program_id, game_id, record.bidder, seq))
    return SettlementAccounts(
        platform=to_pubkey(platform),
        bids=tuple(bids),
        players=frozenset(players),
        bidders=frozenset(bidders),
    )


def place_bid_accounts(ledger, program_id, game_id, bidder, platform):
    bidder = to_pubkey(bidder)
    game = read_game(ledger, program_id, game_id)
    next_seq = game.total_bids + 1 if game is not None else 1
    return PlaceBidAccounts(
        game=game_address(program_id, game_id),
        bidder=bidder,
        new_bid=bid_address(program_id, game_id, next_seq),
        new_player=player_address(program_id, game_id, bidder, next_seq),
        settlement=settlement_accounts(ledger, program_id, game_id, platform),
    )


def settle_accounts(ledger, program_id, game_id, platform):
    return SettleAccounts(
        game=game_address(program_id, game_id),
        settlement=settlement_accounts(ledger, program_id, game_id, platform),
    )
