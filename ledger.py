#ledger.py
"""Account store backing the auction.

Accounts are rows keyed by a base58 address. Each has an owner, a lamport
balance and raw record bytes. The auction never touches rows directly; it
goes through :class:`Ledger`, which enforces the rent rule, address
uniqueness and the insufficient-funds check.
"""
import logging
import time

from addressing import to_pubkey
from errors import AuctionError, BiddingError
from extensions import db
from models import Account

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

ACCOUNT_STORAGE_OVERHEAD = 128
LAMPORTS_PER_BYTE_YEAR = 3480
EXEMPTION_THRESHOLD = 2

# Balances are stored in a signed 64-bit column.
MAX_LAMPORTS = 2**63 - 1


def minimum_balance(size):
    """Lamports an account of ``size`` data bytes must hold to stay alive."""
    return (ACCOUNT_STORAGE_OVERHEAD + size) * LAMPORTS_PER_BYTE_YEAR * EXEMPTION_THRESHOLD


class Ledger:
    def __init__(self, session=None, clock=None):
        self.session = session if session is not None else db.session
        self.clock = clock or time.time

    def now(self):
        return int(self.clock())

    def get(self, address, for_update=False):
        return self.session.get(
            Account, str(to_pubkey(address)), with_for_update=for_update or None
        )

    def require(self, address, error=BiddingError.AccountNotFound, for_update=False):
        account = self.get(address, for_update=for_update)
        if account is None:
            raise AuctionError(error, str(address))
        return account

    def open_wallet(self, address):
        """Return the system account at ``address``, creating an empty one."""
        account = self.get(address)
        if account is None:
            account = Account(address=str(to_pubkey(address)), owner=SYSTEM_PROGRAM_ID, lamports=0, data=b'')
            self.session.add(account)
            self.session.flush()
        return account

    def create_account(self, payer, address, size, owner):
        """Create a zeroed ``size``-byte account owned by ``owner``.

        The payer funds the account's minimum balance.
        """
        if self.get(address) is not None:
            raise AuctionError(BiddingError.AccountAlreadyInUse, str(address))
        rent = minimum_balance(size)
        if self.balance(payer) < rent:
            raise AuctionError(BiddingError.InsufficientFunds, f"{payer} cannot fund {address}")
        account = Account(
            address=str(to_pubkey(address)),
            owner=str(to_pubkey(owner)),
            lamports=0,
            data=bytes(size),
        )
        self.session.add(account)
        self.session.flush()
        self.transfer(payer, address, rent)
        logger.debug("created %s (%d bytes, %d lamports)", account.address, size, rent)
        return account

    def read(self, address):
        account = self.get(address)
        return account.data if account is not None else b''

    def write(self, address, data):
        account = self.require(address)
        if len(data) != len(account.data):
            raise AuctionError(
                BiddingError.InvalidAccountData,
                f"{address}: record is {len(data)} bytes, account holds {len(account.data)}",
            )
        account.data = bytes(data)

    def balance(self, address):
        account = self.get(address)
        return account.lamports if account is not None else 0

    def transfer(self, source, destination, amount, error=BiddingError.InsufficientFunds):
        """Move ``amount`` lamports; the only way value changes hands.

        A missing destination is opened as an empty system account.
        """
        if amount < 0:
            raise ValueError("transfer amount must not be negative")
        src = self.require(source)
        if src.lamports < amount:
            raise AuctionError(error, f"{src.address} holds {src.lamports}, needs {amount}")
        dst = self.open_wallet(destination)
        self._check_ceiling(dst, amount)
        src.lamports -= amount
        dst.lamports += amount

    def credit(self, address, amount):
        """Mint lamports into a wallet (deposits)."""
        if amount < 0:
            raise ValueError("credit amount must not be negative")
        account = self.open_wallet(address)
        self._check_ceiling(account, amount)
        account.lamports += amount
        return account

    def _check_ceiling(self, account, amount):
        if account.lamports + amount > MAX_LAMPORTS:
            raise AuctionError(
                BiddingError.InvalidInstruction,
                f"{account.address} would hold more than {MAX_LAMPORTS} lamports",
            )

    def program_accounts(self, owner, size=None):
        query = self.session.query(Account).filter_by(owner=str(to_pubkey(owner)))
        accounts = query.order_by(Account.created_at).all()
        if size is not None:
            accounts = [a for a in accounts if len(a.data) == size]
        return accounts

    def debit(self, address, amount):
        """Remove lamports from a wallet (withdrawals)."""
        account = self.require(address)
        if account.lamports < amount:
            raise AuctionError(BiddingError.InsufficientFunds, f"{account.address} holds {account.lamports}")
        account.lamports -= amount
        return account
