import pytest
from solders.keypair import Keypair

from app import create_app
from extensions import db
from instructions import (
    CreateGame,
    PlaceBid,
    SettleIfExpired,
    create_game_accounts,
    place_bid_accounts,
    read_game,
    settle_accounts,
)
from ledger import Ledger
from processor import BiddingProcessor, execute

PROGRAM_ID = "AoeUXEf8rQNUjMb1299zXA4WChu46s8Y8Muygjpa2SJT"
PLATFORM = "7UxgfmMiNMbjHxEayn51uRjkeyrMiR4pPXWbo8sFUrsG"
START_TIME = 1_700_000_000


class FakeClock:
    def __init__(self, now=START_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class Auction:
    """Drives the processor the way a client would."""

    def __init__(self, processor, ledger, clock):
        self.processor = processor
        self.ledger = ledger
        self.clock = clock

    def wallet(self, lamports=10**12):
        address = Keypair().pubkey()
        self.ledger.credit(address, lamports)
        self.ledger.session.commit()
        return address

    def create(self, payer, amount, game_id=1):
        accounts = create_game_accounts(PROGRAM_ID, game_id, payer)
        return execute(self.processor, CreateGame(game_id, amount), accounts)

    def bid(self, bidder, amount, game_id=1, bid_count=None, wait=10):
        self.clock.advance(wait)
        accounts = place_bid_accounts(self.ledger, PROGRAM_ID, game_id, bidder, PLATFORM)
        if bid_count is None:
            bid_count = self.state(game_id).total_bids + 1
        return execute(self.processor, PlaceBid(amount, bid_count), accounts)

    def settle(self, game_id=1):
        accounts = settle_accounts(self.ledger, PROGRAM_ID, game_id, PLATFORM)
        return execute(self.processor, SettleIfExpired(), accounts)

    def state(self, game_id=1):
        return read_game(self.ledger, PROGRAM_ID, game_id)

    def play(self, amounts, game_id=1):
        """Create a game and bid ``amounts`` in order, one new wallet per bid."""
        bidders = [self.wallet() for _ in amounts]
        self.create(bidders[0], amounts[0], game_id)
        for bidder, amount in zip(bidders[1:], amounts[1:]):
            self.bid(bidder, amount, game_id)
        return bidders


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "JWT_SECRET_KEY": "test-secret-key-long-enough-for-hs256-signing",
        "PROGRAM_ID": PROGRAM_ID,
        "PLATFORM_ACCOUNT": PLATFORM,
        "LOG_LEVEL": "WARNING",
        "BCRYPT_LOG_ROUNDS": 4,
        "CLOCK": clock,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ledger(app, clock):
    return Ledger(db.session, clock=clock)


@pytest.fixture
def processor(ledger):
    return BiddingProcessor(ledger, PROGRAM_ID, PLATFORM)


@pytest.fixture
def auction(processor, ledger, clock):
    return Auction(processor, ledger, clock)
