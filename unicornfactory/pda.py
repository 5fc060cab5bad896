"""Program-derived address helpers for Unicorn Factory accounts."""

from __future__ import annotations

import logging
from typing import Sequence, Tuple, Union

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from .constants import SEED_MILESTONE, SEED_PROJECT, SEED_PROPOSAL
from .errors import AddressDerivationFailure, InvalidInput
from .units import check_uint

logger = logging.getLogger(__name__)

MAX_SEED_LEN = 32
# The runtime allows 16 seeds, one of which is the bump.
MAX_SEEDS = 15

PubkeyLike = Union[Pubkey, str, bytes]


def as_pubkey(value: PubkeyLike, name: str = "pubkey") -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise InvalidInput(f"{name} must be 32 bytes, got {len(value)}")
        return Pubkey.from_bytes(bytes(value))
    if isinstance(value, str):
        text = value.strip()
        try:
            return Pubkey.from_string(text)
        except ValueError as exc:
            raise InvalidInput(f"{name} is not a valid base58 pubkey: {value!r}") from exc
    raise InvalidInput(f"{name} must be a Pubkey, base58 string, or 32 bytes")


def index_seed(index: int, name: str = "index") -> bytes:
    return bytes([check_uint(index, 8, name)])


def derive(tag: str, parts: Sequence[bytes], program_id: PubkeyLike) -> Tuple[Pubkey, int]:
    """Find the canonical PDA and bump for ``tag`` followed by ``parts``."""
    seeds = [tag.encode("ascii"), *(bytes(part) for part in parts)]
    if len(seeds) > MAX_SEEDS:
        raise AddressDerivationFailure(f"too many seeds ({len(seeds)} > {MAX_SEEDS})")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise AddressDerivationFailure(f"seed longer than {MAX_SEED_LEN} bytes")
    program = as_pubkey(program_id, "program_id")
    try:
        address, bump = Pubkey.find_program_address(seeds, program)
    except Exception as exc:
        raise AddressDerivationFailure(f"unable to derive '{tag}' address: {exc}") from exc
    logger.debug("derived %s PDA %s (bump %d)", tag, address, bump)
    return address, bump


def derive_project(program_id: PubkeyLike, authority: PubkeyLike) -> Tuple[Pubkey, int]:
    return derive(SEED_PROJECT, [bytes(as_pubkey(authority, "authority"))], program_id)


def derive_proposal(program_id: PubkeyLike, project: PubkeyLike, index: int) -> Tuple[Pubkey, int]:
    return derive(
        SEED_PROPOSAL,
        [bytes(as_pubkey(project, "project")), index_seed(index, "proposal index")],
        program_id,
    )


def derive_milestone(program_id: PubkeyLike, project: PubkeyLike, index: int) -> Tuple[Pubkey, int]:
    return derive(
        SEED_MILESTONE,
        [bytes(as_pubkey(project, "project")), index_seed(index, "milestone index")],
        program_id,
    )


def verify_project_address(
    program_id: PubkeyLike,
    address: PubkeyLike,
    authority: PubkeyLike,
    bump: int | None = None,
) -> bool:
    expected, expected_bump = derive_project(program_id, authority)
    if expected != as_pubkey(address, "address"):
        return False
    return bump is None or bump == expected_bump


def associated_token_address(owner: PubkeyLike, mint: PubkeyLike) -> Pubkey:
    return get_associated_token_address(as_pubkey(owner, "owner"), as_pubkey(mint, "mint"))
