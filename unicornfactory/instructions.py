"""Instruction variants and builders for the Unicorn Factory program.

Every mutating operation is a frozen dataclass that validates its payload on
construction and owns its opcode. ``pack()`` produces the exact bytes the
program's ``unpack`` expects; ``decode_instruction`` is the inverse.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar, Dict, List, Type, Union

from solders.compute_budget import set_compute_unit_limit
from solders.instruction import AccountMeta, Instruction
from solders.system_program import CreateAccountParams, create_account
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import MINT_LEN, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    InitializeMintParams,
    create_associated_token_account,
    initialize_mint,
)

from .constants import (
    ADD_MILESTONE_RESERVED,
    DESCRIPTION_MAX,
    NAME_MAX,
    OP_ADD_MILESTONE,
    OP_BUY_TOKENS,
    OP_COMPLETE_MILESTONE,
    OP_CONTRIBUTE,
    OP_CREATE_PROPOSAL,
    OP_INITIALIZE_PROJECT,
    OP_RELEASE_FUNDS,
    OP_SELL_TOKENS,
    OP_VOTE,
    SYMBOL_MAX,
    TITLE_MAX,
    UNIT_DECIMALS,
)
from .errors import InvalidInput
from .pda import PubkeyLike, as_pubkey
from .units import check_uint, encode_text


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise InvalidInput(
                f"instruction data truncated: need {end} bytes, have {len(self.data)}"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self.take(8))[0]

    def text(self, size: int, name: str) -> str:
        try:
            return self.take(size).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidInput(f"{name} is not valid UTF-8") from exc

    def finish(self) -> None:
        if self.offset != len(self.data):
            raise InvalidInput(f"{len(self.data) - self.offset} trailing bytes in instruction data")


@dataclass(frozen=True)
class InitializeProject:
    OPCODE: ClassVar[int] = OP_INITIALIZE_PROJECT

    name: str
    symbol: str
    funding_goal: int

    def __post_init__(self) -> None:
        encode_text(self.name, NAME_MAX, "name")
        encode_text(self.symbol, SYMBOL_MAX, "symbol")
        check_uint(self.funding_goal, 64, "funding_goal")

    def pack(self) -> bytes:
        name = self.name.encode("utf-8")
        symbol = self.symbol.encode("utf-8")
        return (
            bytes([self.OPCODE])
            + struct.pack("<II", len(name), len(symbol))
            + name
            + symbol
            + struct.pack("<Q", self.funding_goal)
        )

    @classmethod
    def unpack(cls, reader: _Reader) -> "InitializeProject":
        name_len = reader.u32()
        symbol_len = reader.u32()
        name = reader.text(name_len, "name")
        symbol = reader.text(symbol_len, "symbol")
        return cls(name, symbol, reader.u64())


@dataclass(frozen=True)
class _AmountInstruction:
    OPCODE: ClassVar[int]

    amount: int

    def __post_init__(self) -> None:
        check_uint(self.amount, 64, "amount")

    def pack(self) -> bytes:
        return bytes([self.OPCODE]) + struct.pack("<Q", self.amount)

    @classmethod
    def unpack(cls, reader: _Reader):
        return cls(reader.u64())


@dataclass(frozen=True)
class Contribute(_AmountInstruction):
    OPCODE: ClassVar[int] = OP_CONTRIBUTE


@dataclass(frozen=True)
class BuyTokens(_AmountInstruction):
    OPCODE: ClassVar[int] = OP_BUY_TOKENS


@dataclass(frozen=True)
class SellTokens(_AmountInstruction):
    OPCODE: ClassVar[int] = OP_SELL_TOKENS


@dataclass(frozen=True)
class CreateProposal:
    OPCODE: ClassVar[int] = OP_CREATE_PROPOSAL

    title: str
    description: str
    amount: int
    milestone_id: int

    def __post_init__(self) -> None:
        encode_text(self.title, TITLE_MAX, "title")
        encode_text(self.description, DESCRIPTION_MAX, "description")
        check_uint(self.amount, 64, "amount")
        check_uint(self.milestone_id, 8, "milestone_id")

    def pack(self) -> bytes:
        title = self.title.encode("utf-8")
        description = self.description.encode("utf-8")
        return (
            bytes([self.OPCODE])
            + struct.pack("<II", len(title), len(description))
            + title
            + description
            + struct.pack("<QB", self.amount, self.milestone_id)
        )

    @classmethod
    def unpack(cls, reader: _Reader) -> "CreateProposal":
        title_len = reader.u32()
        desc_len = reader.u32()
        title = reader.text(title_len, "title")
        description = reader.text(desc_len, "description")
        return cls(title, description, reader.u64(), reader.u8())


@dataclass(frozen=True)
class Vote:
    OPCODE: ClassVar[int] = OP_VOTE

    proposal_id: int
    approve: bool

    def __post_init__(self) -> None:
        check_uint(self.proposal_id, 64, "proposal_id")
        if not isinstance(self.approve, bool):
            raise InvalidInput("vote must be a bool")

    def pack(self) -> bytes:
        return bytes([self.OPCODE]) + struct.pack("<QB", self.proposal_id, 1 if self.approve else 0)

    @classmethod
    def unpack(cls, reader: _Reader) -> "Vote":
        proposal_id = reader.u64()
        vote = reader.u8()
        if vote not in (0, 1):
            raise InvalidInput(f"vote byte must be 0 or 1, got {vote}")
        return cls(proposal_id, vote == 1)


@dataclass(frozen=True)
class ReleaseFunds:
    OPCODE: ClassVar[int] = OP_RELEASE_FUNDS

    proposal_id: int

    def __post_init__(self) -> None:
        check_uint(self.proposal_id, 64, "proposal_id")

    def pack(self) -> bytes:
        return bytes([self.OPCODE]) + struct.pack("<Q", self.proposal_id)

    @classmethod
    def unpack(cls, reader: _Reader) -> "ReleaseFunds":
        return cls(reader.u64())


@dataclass(frozen=True)
class AddMilestone:
    OPCODE: ClassVar[int] = OP_ADD_MILESTONE

    title: str
    description: str
    amount: int

    def __post_init__(self) -> None:
        encode_text(self.title, TITLE_MAX, "title")
        encode_text(self.description, DESCRIPTION_MAX, "description")
        check_uint(self.amount, 64, "amount")

    def pack(self) -> bytes:
        title = self.title.encode("utf-8")
        description = self.description.encode("utf-8")
        return (
            bytes([self.OPCODE])
            + struct.pack("<II", len(title), len(description))
            + bytes(ADD_MILESTONE_RESERVED)
            + title
            + description
            + struct.pack("<Q", self.amount)
        )

    @classmethod
    def unpack(cls, reader: _Reader) -> "AddMilestone":
        title_len = reader.u32()
        desc_len = reader.u32()
        reader.take(ADD_MILESTONE_RESERVED)
        title = reader.text(title_len, "title")
        description = reader.text(desc_len, "description")
        return cls(title, description, reader.u64())


@dataclass(frozen=True)
class CompleteMilestone:
    OPCODE: ClassVar[int] = OP_COMPLETE_MILESTONE

    milestone_id: int

    def __post_init__(self) -> None:
        check_uint(self.milestone_id, 8, "milestone_id")

    def pack(self) -> bytes:
        return bytes([self.OPCODE, self.milestone_id])

    @classmethod
    def unpack(cls, reader: _Reader) -> "CompleteMilestone":
        return cls(reader.u8())


ProgramInstruction = Union[
    InitializeProject,
    Contribute,
    BuyTokens,
    SellTokens,
    CreateProposal,
    Vote,
    ReleaseFunds,
    AddMilestone,
    CompleteMilestone,
]

VARIANTS: Dict[int, Type] = {
    cls.OPCODE: cls
    for cls in (
        InitializeProject,
        Contribute,
        BuyTokens,
        SellTokens,
        CreateProposal,
        Vote,
        ReleaseFunds,
        AddMilestone,
        CompleteMilestone,
    )
}


def decode_instruction(data: bytes) -> ProgramInstruction:
    if not data:
        raise InvalidInput("instruction data is empty")
    variant = VARIANTS.get(data[0])
    if variant is None:
        raise InvalidInput(f"unknown opcode {data[0]}")
    reader = _Reader(bytes(data[1:]))
    decoded = variant.unpack(reader)
    reader.finish()
    return decoded


# ── Account metas ──────────────────────────────────────────────────


def _meta(pubkey: PubkeyLike, signer: bool, writable: bool) -> AccountMeta:
    return AccountMeta(as_pubkey(pubkey), signer, writable)


def _program_ix(program_id: PubkeyLike, payload: ProgramInstruction, metas: List[AccountMeta]) -> Instruction:
    return Instruction(as_pubkey(program_id, "program_id"), payload.pack(), metas)


def initialize_project_ix(
    program_id: PubkeyLike,
    payload: InitializeProject,
    *,
    project: PubkeyLike,
    authority: PubkeyLike,
    mint: PubkeyLike,
) -> Instruction:
    return _program_ix(
        program_id,
        payload,
        [
            _meta(project, False, True),
            _meta(authority, True, True),
            _meta(SYSTEM_PROGRAM_ID, False, False),
            _meta(TOKEN_PROGRAM_ID, False, False),
            _meta(mint, True, True),
        ],
    )


def _trade_ix(
    program_id: PubkeyLike,
    payload: Union[Contribute, BuyTokens, SellTokens],
    project: PubkeyLike,
    trader: PubkeyLike,
    trader_token_account: PubkeyLike,
    mint: PubkeyLike,
) -> Instruction:
    return _program_ix(
        program_id,
        payload,
        [
            _meta(project, False, True),
            _meta(trader, True, True),
            _meta(trader_token_account, False, True),
            _meta(mint, False, True),
            _meta(TOKEN_PROGRAM_ID, False, False),
            _meta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


def contribute_ix(
    program_id: PubkeyLike,
    payload: Contribute,
    *,
    project: PubkeyLike,
    contributor: PubkeyLike,
    contributor_token_account: PubkeyLike,
    mint: PubkeyLike,
) -> Instruction:
    return _trade_ix(program_id, payload, project, contributor, contributor_token_account, mint)


def buy_tokens_ix(
    program_id: PubkeyLike,
    payload: BuyTokens,
    *,
    project: PubkeyLike,
    buyer: PubkeyLike,
    buyer_token_account: PubkeyLike,
    mint: PubkeyLike,
) -> Instruction:
    return _trade_ix(program_id, payload, project, buyer, buyer_token_account, mint)


def sell_tokens_ix(
    program_id: PubkeyLike,
    payload: SellTokens,
    *,
    project: PubkeyLike,
    seller: PubkeyLike,
    seller_token_account: PubkeyLike,
    mint: PubkeyLike,
) -> Instruction:
    return _trade_ix(program_id, payload, project, seller, seller_token_account, mint)


def create_proposal_ix(
    program_id: PubkeyLike,
    payload: CreateProposal,
    *,
    project: PubkeyLike,
    proposal: PubkeyLike,
    authority: PubkeyLike,
) -> Instruction:
    return _program_ix(
        program_id,
        payload,
        [
            _meta(project, False, True),
            _meta(proposal, False, True),
            _meta(authority, True, True),
            _meta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


def vote_ix(
    program_id: PubkeyLike,
    payload: Vote,
    *,
    project: PubkeyLike,
    proposal: PubkeyLike,
    voter: PubkeyLike,
) -> Instruction:
    return _program_ix(
        program_id,
        payload,
        [
            _meta(project, False, False),
            _meta(proposal, False, True),
            _meta(voter, True, False),
            _meta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


def release_funds_ix(
    program_id: PubkeyLike,
    payload: ReleaseFunds,
    *,
    project: PubkeyLike,
    proposal: PubkeyLike,
    authority: PubkeyLike,
) -> Instruction:
    return _program_ix(
        program_id,
        payload,
        [
            _meta(project, False, True),
            _meta(proposal, False, True),
            _meta(authority, True, True),
            _meta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


def add_milestone_ix(
    program_id: PubkeyLike,
    payload: AddMilestone,
    *,
    project: PubkeyLike,
    milestone: PubkeyLike,
    authority: PubkeyLike,
) -> Instruction:
    return _program_ix(
        program_id,
        payload,
        [
            _meta(project, False, True),
            _meta(milestone, False, True),
            _meta(authority, True, True),
            _meta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


def complete_milestone_ix(
    program_id: PubkeyLike,
    payload: CompleteMilestone,
    *,
    project: PubkeyLike,
    milestone: PubkeyLike,
    authority: PubkeyLike,
) -> Instruction:
    return _program_ix(
        program_id,
        payload,
        [
            _meta(project, False, False),
            _meta(milestone, False, True),
            _meta(authority, True, False),
            _meta(SYSTEM_PROGRAM_ID, False, False),
        ],
    )


# ── Supporting instructions ────────────────────────────────────────


def create_mint_ixs(
    *,
    payer: PubkeyLike,
    mint: PubkeyLike,
    mint_authority: PubkeyLike,
    lamports: int,
) -> List[Instruction]:
    """Allocate and initialize an SPL mint whose authority is the project PDA."""
    mint_key = as_pubkey(mint, "mint")
    return [
        create_account(
            CreateAccountParams(
                from_pubkey=as_pubkey(payer, "payer"),
                to_pubkey=mint_key,
                lamports=lamports,
                space=MINT_LEN,
                owner=TOKEN_PROGRAM_ID,
            )
        ),
        initialize_mint(
            InitializeMintParams(
                decimals=UNIT_DECIMALS,
                program_id=TOKEN_PROGRAM_ID,
                mint=mint_key,
                mint_authority=as_pubkey(mint_authority, "mint_authority"),
                freeze_authority=None,
            )
        ),
    ]


def create_token_account_ix(*, payer: PubkeyLike, owner: PubkeyLike, mint: PubkeyLike) -> Instruction:
    return create_associated_token_account(
        as_pubkey(payer, "payer"),
        as_pubkey(owner, "owner"),
        as_pubkey(mint, "mint"),
    )


def compute_limit_ix(units: int) -> Instruction:
    return set_compute_unit_limit(check_uint(units, 32, "compute units"))
