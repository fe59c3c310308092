from dataclasses import replace

import pytest
from solders.pubkey import Pubkey

from addressing import bid_address, game_address, player_address
from errors import AuctionError, BiddingError
from instructions import (
    CreateGame,
    PlaceBid,
    SettleIfExpired,
    create_game_accounts,
    place_bid_accounts,
)
from ledger import minimum_balance
from processor import execute
from state import BID_ACCOUNT_SIZE, GAME_ACCOUNT_SIZE, PLAYER_ACCOUNT_SIZE, BidRecord, PlayerState
from conftest import PLATFORM, PROGRAM_ID, START_TIME

RENT = minimum_balance(GAME_ACCOUNT_SIZE) + minimum_balance(PLAYER_ACCOUNT_SIZE) + minimum_balance(BID_ACCOUNT_SIZE)
BID_RENT = minimum_balance(PLAYER_ACCOUNT_SIZE) + minimum_balance(BID_ACCOUNT_SIZE)


def snapshot(ledger, addresses):
    return {str(a): (ledger.balance(a), ledger.read(a)) for a in addresses}


class TestCreateGame:
    def test_creates_game_player_and_first_bid(self, auction, ledger) -> None:
        payer = auction.wallet()
        outcome = auction.create(payer, 14_000_000)

        state = auction.state()
        assert state == outcome.state
        assert state.game_id == 1
        assert state.total_bids == 1
        assert state.highest_bid == state.prize_pool == state.initial_bid_amount == 14_000_000
        assert state.last_bidder == payer
        assert state.last_bid_time == START_TIME
        assert state.platform_fee_percentage == 10
        assert not state.game_ended

        bid = BidRecord.unpack(ledger.read(bid_address(PROGRAM_ID, 1, 1)))
        assert bid == BidRecord(payer, 14_000_000, START_TIME)
        player = PlayerState.unpack(ledger.read(player_address(PROGRAM_ID, 1, payer, 1)))
        assert player == PlayerState(total_bid_amount=14_000_000, safe=False, royalty_earned=0, bid_count=1)

        game = game_address(PROGRAM_ID, 1)
        assert ledger.balance(game) == minimum_balance(GAME_ACCOUNT_SIZE) + 14_000_000
        assert ledger.balance(payer) == 10**12 - RENT - 14_000_000

    def test_rejects_small_initial_bid(self, auction) -> None:
        payer = auction.wallet()
        with pytest.raises(AuctionError) as excinfo:
            auction.create(payer, 13_999_999)
        assert excinfo.value.error is BiddingError.InsufficientInitialBid
        assert auction.state() is None

    @pytest.mark.parametrize(
        "field, error",
        [
            ("game", BiddingError.InvalidGameAccount),
            ("player", BiddingError.InvalidPlayerAccount),
            ("bid", BiddingError.InvalidBidAccount),
        ],
    )
    def test_rejects_mismatched_addresses(self, auction, processor, field, error) -> None:
        payer = auction.wallet()
        accounts = replace(create_game_accounts(PROGRAM_ID, 1, payer), **{field: Pubkey.new_unique()})
        with pytest.raises(AuctionError) as excinfo:
            execute(processor, CreateGame(1, 14_000_000), accounts)
        assert excinfo.value.error is error

    def test_player_address_is_bound_to_payer(self, auction, processor) -> None:
        payer = auction.wallet()
        someone_else = create_game_accounts(PROGRAM_ID, 1, Pubkey.new_unique())
        accounts = replace(create_game_accounts(PROGRAM_ID, 1, payer), player=someone_else.player)
        with pytest.raises(AuctionError) as excinfo:
            execute(processor, CreateGame(1, 14_000_000), accounts)
        assert excinfo.value.error is BiddingError.InvalidPlayerAccount

    def test_same_game_id_twice_fails(self, auction) -> None:
        auction.create(auction.wallet(), 14_000_000)
        with pytest.raises(AuctionError) as excinfo:
            auction.create(auction.wallet(), 20_000_000)
        assert excinfo.value.error is BiddingError.AccountAlreadyInUse
        assert auction.state().initial_bid_amount == 14_000_000

    def test_underfunded_payer_leaves_nothing_behind(self, auction, ledger) -> None:
        payer = auction.wallet(RENT + 1_000)
        with pytest.raises(AuctionError) as excinfo:
            auction.create(payer, 14_000_000)
        assert excinfo.value.error is BiddingError.InsufficientFunds
        assert ledger.get(game_address(PROGRAM_ID, 1)) is None
        assert ledger.get(bid_address(PROGRAM_ID, 1, 1)) is None
        assert ledger.get(player_address(PROGRAM_ID, 1, payer, 1)) is None
        assert ledger.balance(payer) == RENT + 1_000

    def test_arguments_must_be_u64(self) -> None:
        for bad in (-1, 2**64, 1.5, "14000000", True):
            with pytest.raises(AuctionError) as excinfo:
                CreateGame(1, bad)
            assert excinfo.value.error is BiddingError.InvalidInstruction


class TestPlaceBid:
    def test_accepts_doubled_bid(self, auction, ledger, clock) -> None:
        creator, bidder = auction.wallet(), auction.wallet()
        auction.create(creator, 14_000_000)
        outcome = auction.bid(bidder, 28_000_000)

        assert not outcome.settled
        state = auction.state()
        assert state.total_bids == 2
        assert state.highest_bid == 28_000_000
        assert state.prize_pool == 42_000_000
        assert state.last_bidder == bidder
        assert state.last_bid_time == clock.now

        bid = BidRecord.unpack(ledger.read(bid_address(PROGRAM_ID, 1, 2)))
        assert bid == BidRecord(bidder, 28_000_000, clock.now)
        player = PlayerState.unpack(ledger.read(player_address(PROGRAM_ID, 1, bidder, 2)))
        assert player == PlayerState(total_bid_amount=28_000_000, safe=False, royalty_earned=0, bid_count=2)
        assert ledger.balance(bidder) == 10**12 - BID_RENT - 28_000_000
        assert ledger.balance(game_address(PROGRAM_ID, 1)) == minimum_balance(GAME_ACCOUNT_SIZE) + 42_000_000

    def test_pot_is_the_sum_of_accepted_bids(self, auction) -> None:
        amounts = [14_000_000, 28_000_000, 60_000_000, 120_000_000, 500_000_000, 1_000_000_000]
        auction.play(amounts)
        assert auction.state().prize_pool == sum(amounts)
        assert auction.state().total_bids == len(amounts)

    def test_same_bidder_owns_one_player_record_per_bid(self, auction, ledger) -> None:
        bidder = auction.wallet()
        auction.create(bidder, 14_000_000)
        auction.bid(bidder, 28_000_000)
        first = PlayerState.unpack(ledger.read(player_address(PROGRAM_ID, 1, bidder, 1)))
        second = PlayerState.unpack(ledger.read(player_address(PROGRAM_ID, 1, bidder, 2)))
        assert (first.total_bid_amount, first.bid_count) == (14_000_000, 1)
        assert (second.total_bid_amount, second.bid_count) == (28_000_000, 2)

    def test_rejects_bid_below_double(self, auction, ledger) -> None:
        creator, bidder = auction.wallet(), auction.wallet()
        auction.create(creator, 14_000_000)
        game = game_address(PROGRAM_ID, 1)
        before = snapshot(ledger, [game, bidder])

        with pytest.raises(AuctionError) as excinfo:
            auction.bid(bidder, 27_999_999)

        assert excinfo.value.error is BiddingError.InsufficientBidAmount
        assert snapshot(ledger, [game, bidder]) == before
        assert ledger.get(bid_address(PROGRAM_ID, 1, 2)) is None
        assert ledger.get(player_address(PROGRAM_ID, 1, bidder, 2)) is None

    def test_stale_bid_count_loses_the_race(self, auction, ledger, processor) -> None:
        creator, first, second = auction.wallet(), auction.wallet(), auction.wallet()
        auction.create(creator, 14_000_000)
        stale = place_bid_accounts(ledger, PROGRAM_ID, 1, second, PLATFORM)

        auction.bid(first, 28_000_000, bid_count=2)
        with pytest.raises(AuctionError) as excinfo:
            execute(processor, PlaceBid(100_000_000, 2), stale)

        assert excinfo.value.error is BiddingError.BidCountMismatch
        state = auction.state()
        assert state.total_bids == 2
        assert state.last_bidder == first

    def test_rejects_future_bid_count(self, auction) -> None:
        auction.create(auction.wallet(), 14_000_000)
        with pytest.raises(AuctionError) as excinfo:
            auction.bid(auction.wallet(), 28_000_000, bid_count=3)
        assert excinfo.value.error is BiddingError.BidCountMismatch

    @pytest.mark.parametrize(
        "field, error",
        [
            ("new_bid", BiddingError.InvalidNewBidAccount),
            ("new_player", BiddingError.InvalidNewPlayerAccount),
        ],
    )
    def test_rejects_mismatched_new_records(self, auction, ledger, processor, field, error) -> None:
        auction.create(auction.wallet(), 14_000_000)
        bidder = auction.wallet()
        wrong = {
            "new_bid": bid_address(PROGRAM_ID, 1, 3),
            "new_player": player_address(PROGRAM_ID, 1, bidder, 3),
        }[field]
        accounts = replace(place_bid_accounts(ledger, PROGRAM_ID, 1, bidder, PLATFORM), **{field: wrong})
        with pytest.raises(AuctionError) as excinfo:
            execute(processor, PlaceBid(28_000_000, 2), accounts)
        assert excinfo.value.error is error
        assert auction.state().total_bids == 1

    def test_rejects_account_that_is_not_a_game(self, auction, ledger, processor) -> None:
        auction.create(auction.wallet(), 14_000_000)
        bidder = auction.wallet()
        accounts = place_bid_accounts(ledger, PROGRAM_ID, 1, bidder, PLATFORM)

        for impostor in (bidder, Pubkey.new_unique(), bid_address(PROGRAM_ID, 1, 1)):
            with pytest.raises(AuctionError) as excinfo:
                execute(processor, PlaceBid(28_000_000, 2), replace(accounts, game=impostor))
            assert excinfo.value.error in (BiddingError.InvalidGameAccount, BiddingError.InvalidAccountData)

    def test_bidder_must_afford_bid(self, auction, ledger) -> None:
        auction.create(auction.wallet(), 14_000_000)
        bidder = auction.wallet(BID_RENT + 27_999_999)
        with pytest.raises(AuctionError) as excinfo:
            auction.bid(bidder, 28_000_000)
        assert excinfo.value.error is BiddingError.InsufficientFunds
        assert ledger.balance(bidder) == BID_RENT + 27_999_999
        assert auction.state().total_bids == 1

    def test_bid_at_exact_timeout_is_still_accepted(self, auction) -> None:
        auction.create(auction.wallet(), 14_000_000)
        outcome = auction.bid(auction.wallet(), 28_000_000, wait=300)
        assert not outcome.settled
        assert auction.state().total_bids == 2


class TestTimeout:
    def test_late_bid_settles_instead(self, auction, ledger) -> None:
        auction.play([14_000_000, 28_000_000])
        late = auction.wallet()

        outcome = auction.bid(late, 56_000_000, wait=301)

        assert outcome.settled
        assert outcome.bid is None
        assert auction.state().game_ended
        assert auction.state().total_bids == 2
        assert ledger.get(bid_address(PROGRAM_ID, 1, 3)) is None
        assert ledger.balance(late) == 10**12

    def test_bids_after_settlement_are_rejected(self, auction) -> None:
        auction.play([14_000_000, 28_000_000])
        auction.bid(auction.wallet(), 56_000_000, wait=301)
        with pytest.raises(AuctionError) as excinfo:
            auction.bid(auction.wallet(), 56_000_000)
        assert excinfo.value.error is BiddingError.GameEnded

    def test_explicit_settle_waits_for_timeout(self, auction) -> None:
        auction.play([14_000_000, 28_000_000])
        with pytest.raises(AuctionError) as excinfo:
            auction.settle()
        assert excinfo.value.error is BiddingError.GameNotExpired
        assert not auction.state().game_ended

    def test_settling_twice_fails(self, auction, clock) -> None:
        auction.play([14_000_000, 28_000_000])
        clock.advance(301)
        auction.settle()
        with pytest.raises(AuctionError) as excinfo:
            auction.settle()
        assert excinfo.value.error is BiddingError.GameEnded

    def test_custom_timeout(self, auction, processor, clock) -> None:
        processor.timeout_seconds = 120
        auction.play([14_000_000])
        clock.advance(121)
        assert auction.settle().settled


def test_unknown_instruction_is_rejected(processor) -> None:
    with pytest.raises(AuctionError) as excinfo:
        processor.process(object(), None)
    assert excinfo.value.error is BiddingError.InvalidInstruction


def test_settle_if_expired_needs_no_arguments() -> None:
    assert SettleIfExpired() == SettleIfExpired()
