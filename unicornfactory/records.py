"""Domain records decoded from Unicorn Factory accounts."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from solders.pubkey import Pubkey

from .constants import UNIT_SCALE, VOTING_WINDOW_SECONDS
from .units import from_base_units


class ProposalState(str, Enum):
    OPEN = "open"
    PASSED = "passed"
    REJECTED = "rejected"
    EXECUTED = "executed"


class MilestoneState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Project:
    """A crowdfunding project, one per creator authority."""

    authority: Pubkey
    name: str
    symbol: str
    funding_goal: int
    total_raised: int
    token_price: int
    is_active: bool
    bump: int
    token_mint: Pubkey
    milestone_count: int
    proposal_count: int
    address: Optional[Pubkey] = None

    def funding_goal_units(self, scale: int = UNIT_SCALE) -> Decimal:
        return from_base_units(self.funding_goal, scale=scale)

    def total_raised_units(self, scale: int = UNIT_SCALE) -> Decimal:
        return from_base_units(self.total_raised, scale=scale)

    def token_price_units(self, scale: int = UNIT_SCALE) -> Decimal:
        return from_base_units(self.token_price, scale=scale)

    @property
    def goal_reached(self) -> bool:
        return self.funding_goal > 0 and self.total_raised >= self.funding_goal


@dataclass(frozen=True)
class Proposal:
    """A time-boxed vote on releasing one milestone's funds."""

    creator: Pubkey
    title: str
    description: str
    amount: int
    milestone_id: int
    yes_votes: int
    no_votes: int
    is_executed: bool
    created_at: int
    voting_end: int
    address: Optional[Pubkey] = None
    index: Optional[int] = None

    def amount_units(self, scale: int = UNIT_SCALE) -> Decimal:
        return from_base_units(self.amount, scale=scale)

    def state(self, now: int) -> ProposalState:
        return proposal_state(self, now)


@dataclass(frozen=True)
class Milestone:
    """An amount-bearing deliverable gating part of the raised funds."""

    title: str
    description: str
    amount: int
    is_completed: bool
    completed_at: int
    address: Optional[Pubkey] = None
    index: Optional[int] = None

    def amount_units(self, scale: int = UNIT_SCALE) -> Decimal:
        return from_base_units(self.amount, scale=scale)

    @property
    def state(self) -> MilestoneState:
        return MilestoneState.COMPLETED if self.is_completed else MilestoneState.PENDING


def voting_end(created_at: int, window: int = VOTING_WINDOW_SECONDS) -> int:
    return created_at + window


def proposal_state(proposal: Proposal, now: int) -> ProposalState:
    if proposal.is_executed:
        return ProposalState.EXECUTED
    if now < proposal.voting_end:
        return ProposalState.OPEN
    if proposal.yes_votes > proposal.no_votes:
        return ProposalState.PASSED
    return ProposalState.REJECTED
