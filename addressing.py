#addressing.py
"""Deterministic storage addresses for game, bid and player records.

Every record the auction touches lives at an address computed from its
identity, so callers never look addresses up: they derive them, and the
processor re-derives them to check what the caller supplied.

    game   -> [b"game",   u64le(game_id)]
    bid    -> [b"bid",    u64le(game_id), u64le(seq)]
    player -> [b"player", u64le(game_id), bidder, u64le(seq)]

The salt returned with each address is the bump seed that pushes the
address off the ed25519 curve.
"""
from solders.pubkey import Pubkey

GAME = "game"
BID = "bid"
PLAYER = "player"


def to_pubkey(value):
    """Accept a Pubkey, a base58 string or 32 raw bytes."""
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, (bytes, bytearray)):
        return Pubkey.from_bytes(bytes(value))
    return Pubkey.from_string(str(value))


def u64_le(value):
    return int(value).to_bytes(8, "little")


def seeds_for(tag, game_id, identity=None, seq=None):
    if tag == GAME:
        if identity is not None or seq is not None:
            raise ValueError("game addresses take only a game id")
        return [b"game", u64_le(game_id)]
    if tag == BID:
        if identity is not None or seq is None:
            raise ValueError("bid addresses take a game id and a sequence number")
        return [b"bid", u64_le(game_id), u64_le(seq)]
    if tag == PLAYER:
        if identity is None or seq is None:
            raise ValueError("player addresses take a game id, a bidder and a sequence number")
        return [b"player", u64_le(game_id), bytes(to_pubkey(identity)), u64_le(seq)]
    raise ValueError(f"unknown address namespace: {tag!r}")


def derive(program_id, tag, game_id, identity=None, seq=None):
    """Return ``(address, salt)`` for a record in the given namespace."""
    return Pubkey.find_program_address(
        seeds_for(tag, game_id, identity, seq), to_pubkey(program_id)
    )


def game_address(program_id, game_id):
    return derive(program_id, GAME, game_id)[0]


def bid_address(program_id, game_id, seq):
    return derive(program_id, BID, game_id, seq=seq)[0]


def player_address(program_id, game_id, bidder, seq):
    return derive(program_id, PLAYER, game_id, identity=bidder, seq=seq)[0]
