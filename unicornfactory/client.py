"""Async client for the Unicorn Factory crowdfunding program.

The client converts human inputs, derives addresses, encodes instructions,
submits them through a ``Transport``, and returns the record re-fetched after
confirmation. Nothing is cached; every read is a fresh fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .codec import decode_milestone, decode_project, decode_proposal
from .config import ClientConfig, load_keypair
from .curve import PriceReconciliation, reconcile, tokens_for
from .errors import (
    AccountExists,
    InvalidInput,
    InvalidState,
    MalformedAccount,
    NotFound,
    PriceMismatch,
    TransportFailure,
    UnicornError,
)
from .instructions import (
    AddMilestone,
    BuyTokens,
    CompleteMilestone,
    Contribute,
    CreateProposal,
    InitializeProject,
    ReleaseFunds,
    SellTokens,
    Vote,
    add_milestone_ix,
    buy_tokens_ix,
    complete_milestone_ix,
    compute_limit_ix,
    contribute_ix,
    create_mint_ixs,
    create_proposal_ix,
    create_token_account_ix,
    initialize_project_ix,
    release_funds_ix,
    sell_tokens_ix,
    vote_ix,
)
from .pda import (
    PubkeyLike,
    as_pubkey,
    associated_token_address,
    derive_milestone,
    derive_project,
    derive_proposal,
    verify_project_address,
)
from .records import Milestone, Project, Proposal, ProposalState, proposal_state, voting_end
from .transport import RpcTransport, Transport, classify_error
from .units import Amount, to_base_units

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SubmitResult(Generic[T]):
    """Confirmed signature plus the record fetched after confirmation."""

    signature: str
    record: T


class FundingClient:
    def __init__(
        self,
        transport: Transport,
        config: Optional[ClientConfig] = None,
        *,
        signer: Optional[Keypair] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.transport = transport
        self.config = config or ClientConfig()
        self.program_id = as_pubkey(self.config.program_id, "program_id")
        self.signer = signer
        self._clock = clock or time.time

    @classmethod
    def from_config(cls, config: ClientConfig, signer: Optional[Keypair] = None) -> "FundingClient":
        if signer is None and config.payer:
            signer = load_keypair(config.payer)
        transport = RpcTransport(
            config.rpc_url,
            commitment=config.commitment,
            confirm_timeout=config.confirm_timeout,
        )
        return cls(transport, config, signer=signer)

    async def __aenter__(self) -> "FundingClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    def now(self) -> int:
        return int(self._clock())

    # ── Addresses ──────────────────────────────────────────────────

    def project_address(self, authority: Optional[PubkeyLike] = None) -> Pubkey:
        if authority is None:
            authority = self._require_signer().pubkey()
        return derive_project(self.program_id, authority)[0]

    def proposal_address(self, project: PubkeyLike, index: int) -> Pubkey:
        return derive_proposal(self.program_id, project, index)[0]

    def milestone_address(self, project: PubkeyLike, index: int) -> Pubkey:
        return derive_milestone(self.program_id, project, index)[0]

    # ── Reads ──────────────────────────────────────────────────────

    async def get_project(self, address: PubkeyLike) -> Project:
        key = as_pubkey(address, "project")
        project = decode_project(await self._fetch(key), address=key)
        if not verify_project_address(self.program_id, key, project.authority, project.bump):
            raise MalformedAccount(
                f"project account {key} does not match the PDA derived from authority {project.authority}"
            )
        return project

    async def get_project_by_authority(self, authority: PubkeyLike) -> Project:
        return await self.get_project(self.project_address(authority))

    async def get_proposal(self, project: PubkeyLike, index: int) -> Proposal:
        key = self.proposal_address(project, index)
        return decode_proposal(await self._fetch(key), address=key, index=index)

    async def get_milestone(self, project: PubkeyLike, index: int) -> Milestone:
        key = self.milestone_address(project, index)
        return decode_milestone(await self._fetch(key), address=key, index=index)

    async def list_proposals(self, project: PubkeyLike) -> List[Proposal]:
        record = await self.get_project(project)
        return list(
            await asyncio.gather(
                *(self.get_proposal(record.address, i) for i in range(record.proposal_count))
            )
        )

    async def list_milestones(self, project: PubkeyLike) -> List[Milestone]:
        record = await self.get_project(project)
        return list(
            await asyncio.gather(
                *(self.get_milestone(record.address, i) for i in range(record.milestone_count))
            )
        )

    def proposal_state(self, proposal: Proposal, now: Optional[int] = None) -> ProposalState:
        return proposal_state(proposal, self.now() if now is None else now)

    async def quote(self, project: PubkeyLike) -> PriceReconciliation:
        record = await self.get_project(project)
        result = reconcile(record, self.config.unit_scale, self.config.price_tolerance)
        if not result.matches and self.config.strict_prices:
            raise PriceMismatch(
                f"curve price {result.model_price} != on-chain price {result.on_chain_price} "
                f"for project {record.address}"
            )
        return result

    # ── Project and trading ────────────────────────────────────────

    async def initialize_project(
        self,
        name: str,
        symbol: str,
        funding_goal: Amount,
        *,
        mint: Optional[Keypair] = None,
    ) -> SubmitResult[Project]:
        signer = self._require_signer()
        payload = InitializeProject(name, symbol, self._base_units(funding_goal, "funding_goal"))
        project_key, bump = derive_project(self.program_id, signer.pubkey())
        if await self._exists(project_key):
            raise AccountExists(
                f"Project account already exists at {project_key}; each authority owns one project"
            )
        mint = mint or Keypair()
        logger.info("initializing project %s (bump %d) with mint %s", project_key, bump, mint.pubkey())
        instructions = create_mint_ixs(
            payer=signer.pubkey(),
            mint=mint.pubkey(),
            mint_authority=project_key,
            lamports=self.config.mint_rent_lamports,
        )
        instructions.append(
            initialize_project_ix(
                self.program_id,
                payload,
                project=project_key,
                authority=signer.pubkey(),
                mint=mint.pubkey(),
            )
        )
        signature = await self._submit(instructions, [signer, mint])
        return SubmitResult(signature, await self.get_project(project_key))

    async def contribute(self, project: PubkeyLike, amount: Amount) -> SubmitResult[Project]:
        payload = Contribute(self._base_units(amount))
        return await self._trade(project, payload, contribute_ix, "contributor")

    async def buy_tokens(self, project: PubkeyLike, amount: Amount) -> SubmitResult[Project]:
        payload = BuyTokens(self._base_units(amount))
        return await self._trade(project, payload, buy_tokens_ix, "buyer")

    async def sell_tokens(self, project: PubkeyLike, amount: Amount) -> SubmitResult[Project]:
        payload = SellTokens(self._base_units(amount))
        return await self._trade(project, payload, sell_tokens_ix, "seller")

    async def _trade(self, project, payload, builder, role: str) -> SubmitResult[Project]:
        signer = self._require_signer()
        record = await self.get_project(project)
        if not record.is_active:
            raise InvalidState(f"project {record.address} is no longer active")
        token_account = associated_token_address(signer.pubkey(), record.token_mint)
        instructions: List[Instruction] = []
        if not isinstance(payload, SellTokens):
            logger.debug(
                "%s of %d at price %d mints about %d tokens",
                role,
                payload.amount,
                record.token_price,
                tokens_for(payload.amount, record.token_price),
            )
        if isinstance(payload, SellTokens):
            instructions.append(compute_limit_ix(self.config.sell_compute_units))
        elif not await self._exists(token_account):
            logger.info("creating token account %s for %s", token_account, signer.pubkey())
            instructions.append(
                create_token_account_ix(payer=signer.pubkey(), owner=signer.pubkey(), mint=record.token_mint)
            )
        accounts = {
            "project": record.address,
            role: signer.pubkey(),
            f"{role}_token_account": token_account,
            "mint": record.token_mint,
        }
        instructions.append(builder(self.program_id, payload, **accounts))
        signature = await self._submit(instructions, [signer])
        return SubmitResult(signature, await self.get_project(record.address))

    # ── Milestones ─────────────────────────────────────────────────

    async def add_milestone(
        self,
        project: PubkeyLike,
        title: str,
        description: str,
        amount: Amount,
    ) -> SubmitResult[Milestone]:
        signer = self._require_signer()
        payload = AddMilestone(title, description, self._base_units(amount))
        record = await self.get_project(project)
        index = record.milestone_count
        milestone_key = self.milestone_address(record.address, index)
        signature = await self._submit(
            [
                add_milestone_ix(
                    self.program_id,
                    payload,
                    project=record.address,
                    milestone=milestone_key,
                    authority=signer.pubkey(),
                )
            ],
            [signer],
        )
        return SubmitResult(signature, await self.get_milestone(record.address, index))

    async def complete_milestone(self, project: PubkeyLike, milestone_id: int) -> SubmitResult[Milestone]:
        signer = self._require_signer()
        payload = CompleteMilestone(milestone_id)
        project_key = as_pubkey(project, "project")
        milestone = await self.get_milestone(project_key, milestone_id)
        if milestone.is_completed:
            raise InvalidState(f"milestone {milestone_id} is already completed")
        signature = await self._submit(
            [
                complete_milestone_ix(
                    self.program_id,
                    payload,
                    project=project_key,
                    milestone=milestone.address,
                    authority=signer.pubkey(),
                )
            ],
            [signer],
        )
        return SubmitResult(signature, await self.get_milestone(project_key, milestone_id))

    # ── Proposals ──────────────────────────────────────────────────

    async def create_proposal(
        self,
        project: PubkeyLike,
        title: str,
        description: str,
        milestone_id: int,
    ) -> SubmitResult[Proposal]:
        signer = self._require_signer()
        # amount is filled from the milestone once fetched
        payload = CreateProposal(title, description, 0, milestone_id)
        record = await self.get_project(project)
        if milestone_id >= record.milestone_count:
            raise InvalidInput(
                f"milestone {milestone_id} does not exist (project has {record.milestone_count})"
            )
        milestone = await self.get_milestone(record.address, milestone_id)
        now = self.now()
        for existing in await self.list_proposals(record.address):
            if existing.milestone_id != milestone_id:
                continue
            if proposal_state(existing, now) is not ProposalState.REJECTED:
                raise InvalidState(
                    f"proposal {existing.index} already references milestone {milestone_id}"
                )
        payload = replace(payload, amount=milestone.amount)
        index = record.proposal_count
        proposal_key = self.proposal_address(record.address, index)
        logger.info(
            "creating proposal %d for milestone %d; voting closes near %d",
            index,
            milestone_id,
            voting_end(now, self.config.voting_window),
        )
        signature = await self._submit(
            [
                create_proposal_ix(
                    self.program_id,
                    payload,
                    project=record.address,
                    proposal=proposal_key,
                    authority=signer.pubkey(),
                )
            ],
            [signer],
        )
        return SubmitResult(signature, await self.get_proposal(record.address, index))

    async def vote(self, project: PubkeyLike, proposal_index: int, approve: bool) -> SubmitResult[Proposal]:
        signer = self._require_signer()
        payload = Vote(proposal_index, approve)
        project_key = as_pubkey(project, "project")
        proposal = await self.get_proposal(project_key, proposal_index)
        state = self.proposal_state(proposal)
        if state is not ProposalState.OPEN:
            raise InvalidState(f"proposal {proposal_index} is {state.value}; voting is closed")
        signature = await self._submit(
            [
                vote_ix(
                    self.program_id,
                    payload,
                    project=project_key,
                    proposal=proposal.address,
                    voter=signer.pubkey(),
                )
            ],
            [signer],
        )
        return SubmitResult(signature, await self.get_proposal(project_key, proposal_index))

    async def release_funds(self, project: PubkeyLike, proposal_index: int) -> SubmitResult[Proposal]:
        signer = self._require_signer()
        payload = ReleaseFunds(proposal_index)
        project_key = as_pubkey(project, "project")
        proposal = await self.get_proposal(project_key, proposal_index)
        state = self.proposal_state(proposal)
        if state is not ProposalState.PASSED:
            raise InvalidState(f"proposal {proposal_index} is {state.value}; only passed proposals release funds")
        milestone = await self.get_milestone(project_key, proposal.milestone_id)
        if milestone.amount != proposal.amount:
            logger.warning(
                "proposal %d amount %d differs from milestone %d amount %d; the program pays the milestone amount",
                proposal_index,
                proposal.amount,
                proposal.milestone_id,
                milestone.amount,
            )
        signature = await self._submit(
            [
                release_funds_ix(
                    self.program_id,
                    payload,
                    project=project_key,
                    proposal=proposal.address,
                    authority=signer.pubkey(),
                )
            ],
            [signer],
        )
        return SubmitResult(signature, await self.get_proposal(project_key, proposal_index))

    # ── Internals ──────────────────────────────────────────────────

    def _require_signer(self) -> Keypair:
        if self.signer is None:
            raise InvalidInput("a signer keypair is required for this operation")
        return self.signer

    def _base_units(self, amount: Amount, name: str = "amount") -> int:
        return to_base_units(amount, scale=self.config.unit_scale, name=name)

    async def _fetch(self, address: Pubkey) -> bytes:
        try:
            return await self.transport.fetch(address)
        except UnicornError:
            raise
        except Exception as exc:
            raise (classify_error(exc) or TransportFailure(str(exc))) from exc

    async def _exists(self, address: Pubkey) -> bool:
        try:
            await self._fetch(address)
        except NotFound:
            return False
        return True

    async def _submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        logger.debug("submitting %d instruction(s) to %s", len(instructions), self.program_id)
        try:
            return await self.transport.submit(instructions, signers)
        except UnicornError:
            raise
        except Exception as exc:
            raise (classify_error(exc) or TransportFailure(str(exc))) from exc
