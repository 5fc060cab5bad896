"""In-memory ledger used by the client and CLI tests.

It applies each program instruction to encoded account bytes the way the
on-chain program would, so tests exercise the real codec on every read.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Sequence, Tuple

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID

from unicornfactory.codec import (
    decode_milestone,
    decode_project,
    decode_proposal,
    encode_milestone,
    encode_project,
    encode_proposal,
)
from unicornfactory.constants import DEFAULT_PROGRAM_ID, UNIT_SCALE, VOTING_WINDOW_SECONDS
from unicornfactory.curve import price_base_units
from unicornfactory.errors import NotFound
from unicornfactory.instructions import (
    AddMilestone,
    BuyTokens,
    CompleteMilestone,
    Contribute,
    CreateProposal,
    InitializeProject,
    ReleaseFunds,
    SellTokens,
    Vote,
    decode_instruction,
)
from unicornfactory.pda import derive_project
from unicornfactory.records import Milestone, Project, Proposal

PROGRAM_ID = Pubkey.from_string(DEFAULT_PROGRAM_ID)


def make_project(**overrides: object) -> Project:
    base = dict(
        authority=Pubkey.new_unique(),
        name="Unicorn",
        symbol="UNI",
        funding_goal=10 * UNIT_SCALE,
        total_raised=0,
        token_price=UNIT_SCALE,
        is_active=True,
        bump=254,
        token_mint=Pubkey.new_unique(),
        milestone_count=0,
        proposal_count=0,
    )
    base.update(overrides)
    return Project(**base)  # type: ignore[arg-type]


def make_proposal(**overrides: object) -> Proposal:
    base = dict(
        creator=Pubkey.new_unique(),
        title="Ship beta",
        description="Release beta build",
        amount=2 * UNIT_SCALE,
        milestone_id=0,
        yes_votes=0,
        no_votes=0,
        is_executed=False,
        created_at=1000,
        voting_end=1000 + VOTING_WINDOW_SECONDS,
    )
    base.update(overrides)
    return Proposal(**base)  # type: ignore[arg-type]


def make_milestone(**overrides: object) -> Milestone:
    base = dict(
        title="Beta",
        description="Feature complete beta",
        amount=2 * UNIT_SCALE,
        is_completed=False,
        completed_at=0,
    )
    base.update(overrides)
    return Milestone(**base)  # type: ignore[arg-type]


class FakeLedger:
    """Transport double: ``fetch`` reads stored bytes, ``submit`` applies instructions."""

    def __init__(self, program_id: Pubkey = PROGRAM_ID, now: int = 1_000) -> None:
        self.program_id = program_id
        self.now = now
        self.accounts: Dict[Pubkey, bytes] = {}
        self.submitted: List[Tuple[List[Instruction], List[Pubkey]]] = []
        self.fetches: List[Pubkey] = []
        self.closed = False

    def clock(self) -> float:
        return float(self.now)

    async def fetch(self, address: Pubkey) -> bytes:
        self.fetches.append(address)
        if address not in self.accounts:
            raise NotFound(address)
        return self.accounts[address]

    async def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        self.submitted.append((list(instructions), [s.pubkey() for s in signers]))
        for ix in instructions:
            self._apply(ix)
        return f"sig{len(self.submitted)}"

    async def close(self) -> None:
        self.closed = True

    # ── Program simulation ─────────────────────────────────────────

    def _apply(self, ix: Instruction) -> None:
        keys = [meta.pubkey for meta in ix.accounts]
        if ix.program_id == ASSOCIATED_TOKEN_PROGRAM_ID:
            self.accounts[keys[1]] = bytes(165)
            return
        if ix.program_id != self.program_id:
            return
        payload = decode_instruction(bytes(ix.data))
        if isinstance(payload, InitializeProject):
            _, bump = derive_project(self.program_id, keys[1])
            self.put_project(
                keys[0],
                Project(
                    authority=keys[1],
                    name=payload.name,
                    symbol=payload.symbol,
                    funding_goal=payload.funding_goal,
                    total_raised=0,
                    token_price=UNIT_SCALE,
                    is_active=True,
                    bump=bump,
                    token_mint=keys[4],
                    milestone_count=0,
                    proposal_count=0,
                ),
            )
        elif isinstance(payload, (Contribute, BuyTokens, SellTokens)):
            project = self.project(keys[0])
            if isinstance(payload, SellTokens):
                raised = max(project.total_raised - payload.amount, 0)
            else:
                raised = project.total_raised + payload.amount
            self.put_project(
                keys[0],
                replace(
                    project,
                    total_raised=raised,
                    token_price=price_base_units(raised, project.funding_goal),
                ),
            )
        elif isinstance(payload, AddMilestone):
            project = self.project(keys[0])
            self.put_milestone(keys[1], Milestone(payload.title, payload.description, payload.amount, False, 0))
            self.put_project(keys[0], replace(project, milestone_count=project.milestone_count + 1))
        elif isinstance(payload, CompleteMilestone):
            milestone = decode_milestone(self.accounts[keys[1]])
            self.put_milestone(keys[1], replace(milestone, is_completed=True, completed_at=self.now))
        elif isinstance(payload, CreateProposal):
            project = self.project(keys[0])
            self.put_proposal(
                keys[1],
                Proposal(
                    creator=keys[2],
                    title=payload.title,
                    description=payload.description,
                    amount=payload.amount,
                    milestone_id=payload.milestone_id,
                    yes_votes=0,
                    no_votes=0,
                    is_executed=False,
                    created_at=self.now,
                    voting_end=self.now + VOTING_WINDOW_SECONDS,
                ),
            )
            self.put_project(keys[0], replace(project, proposal_count=project.proposal_count + 1))
        elif isinstance(payload, Vote):
            proposal = decode_proposal(self.accounts[keys[1]])
            if payload.approve:
                proposal = replace(proposal, yes_votes=proposal.yes_votes + 1)
            else:
                proposal = replace(proposal, no_votes=proposal.no_votes + 1)
            self.put_proposal(keys[1], proposal)
        elif isinstance(payload, ReleaseFunds):
            proposal = decode_proposal(self.accounts[keys[1]])
            self.put_proposal(keys[1], replace(proposal, is_executed=True))

    def project(self, address: Pubkey) -> Project:
        return decode_project(self.accounts[address], address=address)

    def put_project(self, address: Pubkey, project: Project) -> None:
        self.accounts[address] = encode_project(project)

    def put_proposal(self, address: Pubkey, proposal: Proposal) -> None:
        self.accounts[address] = encode_proposal(proposal)

    def put_milestone(self, address: Pubkey, milestone: Milestone) -> None:
        self.accounts[address] = encode_milestone(milestone)
