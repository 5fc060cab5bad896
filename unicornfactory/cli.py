"""CLI entrypoint for the Unicorn Factory client."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Awaitable, Callable, List

from .client import FundingClient
from .config import CLUSTER_URLS, ClientConfig, load_config, load_keypair, write_config
from .constants import VOTING_WINDOW_SECONDS
from .curve import curve_points, price, price_base_units
from .errors import InvalidInput, UnicornError
from .instructions import decode_instruction
from .pda import as_pubkey, derive_milestone, derive_project, derive_proposal
from .records import Milestone, Project, Proposal, proposal_state
from .units import from_base_units, to_base_units


def _resolve_config(args: argparse.Namespace) -> ClientConfig:
    return load_config(
        args.config,
        cluster=args.cluster,
        rpc_url=args.rpc_url,
        program_id=args.program_id,
        payer=args.payer,
    )


def _run_with_client(args: argparse.Namespace, action: Callable[[FundingClient], Awaitable[int]]) -> int:
    config = _resolve_config(args)

    async def _session() -> int:
        client = FundingClient.from_config(config)
        async with client:
            return await action(client)

    return asyncio.run(_session())


def _units(value: int, scale: int) -> str:
    return f"{from_base_units(value, scale=scale).normalize():f}"


def _print_project(project: Project, scale: int) -> None:
    print("Project:")
    print(f"  address: {project.address}")
    print(f"  authority: {project.authority}")
    print(f"  name: {project.name}")
    print(f"  symbol: {project.symbol}")
    print(f"  funding_goal: {_units(project.funding_goal, scale)}")
    print(f"  total_raised: {_units(project.total_raised, scale)}")
    print(f"  goal_reached: {'yes' if project.goal_reached else 'no'}")
    print(f"  token_price: {_units(project.token_price, scale)}")
    print(f"  active: {'yes' if project.is_active else 'no'}")
    print(f"  token_mint: {project.token_mint}")
    print(f"  milestones: {project.milestone_count}")
    print(f"  proposals: {project.proposal_count}")


def _print_milestone(milestone: Milestone, scale: int) -> None:
    print(f"Milestone {milestone.index}: {milestone.title}")
    print(f"  address: {milestone.address}")
    print(f"  amount: {_units(milestone.amount, scale)}")
    print(f"  state: {milestone.state.value}")
    if milestone.is_completed:
        print(f"  completed_at: {milestone.completed_at}")
    if milestone.description:
        print(f"  description: {milestone.description}")


def _print_proposal(proposal: Proposal, scale: int, now: int) -> None:
    print(f"Proposal {proposal.index}: {proposal.title}")
    print(f"  address: {proposal.address}")
    print(f"  creator: {proposal.creator}")
    print(f"  milestone: {proposal.milestone_id}")
    print(f"  amount: {_units(proposal.amount, scale)}")
    print(f"  votes: {proposal.yes_votes} yes / {proposal.no_votes} no")
    print(f"  voting_end: {proposal.voting_end}")
    print(f"  state: {proposal_state(proposal, now).value}")
    if proposal.description:
        print(f"  description: {proposal.description}")


def _signer_pubkey(config: ClientConfig) -> str:
    if not config.payer:
        raise InvalidInput("no payer keypair configured; pass --payer or set one in the config file")
    return str(load_keypair(config.payer).pubkey())


# ── Offline commands ───────────────────────────────────────────────


def _cmd_config_init(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    out_path = Path(args.out) if args.out else Path("unicorn.toml")
    if out_path.exists() and not args.force:
        raise InvalidInput(f"{out_path} already exists; pass --force to overwrite")
    write_config(out_path, config)
    print(f"Wrote config file: {out_path}")
    return 0


def _cmd_config_show(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    print("Config:")
    print(f"  rpc_url: {config.rpc_url}")
    print(f"  program_id: {config.program_id}")
    print(f"  payer: {config.payer or '<none>'}")
    print(f"  commitment: {config.commitment}")
    print(f"  unit_scale: {config.unit_scale}")
    print(f"  voting_window: {config.voting_window}")
    print(f"  strict_prices: {'yes' if config.strict_prices else 'no'}")
    return 0


def _cmd_derive(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    if args.kind == "project":
        authority = args.authority or _signer_pubkey(config)
        address, bump = derive_project(config.program_id, authority)
    else:
        if not args.project:
            raise InvalidInput(f"--project is required to derive a {args.kind} address")
        if args.index is None:
            raise InvalidInput(f"--index is required to derive a {args.kind} address")
        derive_fn = derive_proposal if args.kind == "proposal" else derive_milestone
        address, bump = derive_fn(config.program_id, args.project, args.index)
    print(f"{args.kind}: {address}")
    print(f"bump: {bump}")
    return 0


def _cmd_price(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    raised = to_base_units(args.raised, scale=config.unit_scale, name="raised")
    goal = to_base_units(args.goal, scale=config.unit_scale, name="goal")
    print(f"price: {price(raised, goal).normalize():f}")
    print(f"price_base_units: {price_base_units(raised, goal, config.unit_scale)}")
    return 0


def _cmd_curve(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    goal = to_base_units(args.goal, scale=config.unit_scale, name="goal")
    raised, prices = curve_points(goal, steps=args.steps, scale=config.unit_scale)
    print("raised,price")
    for x, y in zip(raised.tolist(), prices.tolist()):
        print(f"{x:.9g},{y:.9g}")
    return 0


def _cmd_decode(args: argparse.Namespace) -> int:
    text = args.data.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    try:
        data = bytes.fromhex(text)
    except ValueError as exc:
        raise InvalidInput(f"instruction data must be hex: {exc}") from exc
    decoded = decode_instruction(data)
    print(f"{type(decoded).__name__} (opcode {decoded.OPCODE})")
    for key, value in vars(decoded).items():
        print(f"  {key}: {value}")
    return 0


# ── Network commands ───────────────────────────────────────────────


def _cmd_project_show(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        if args.address:
            project = await client.get_project(args.address)
        elif args.authority:
            project = await client.get_project_by_authority(args.authority)
        else:
            project = await client.get_project(client.project_address())
        _print_project(project, client.config.unit_scale)
        quote = await client.quote(project.address)
        status = "ok" if quote.matches else "MISMATCH"
        print(f"  curve_price: {quote.model_price.normalize():f} ({status})")
        return 0

    return _run_with_client(args, action)


def _cmd_project_init(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        result = await client.initialize_project(args.name, args.symbol, args.goal)
        print(f"Signature: {result.signature}")
        _print_project(result.record, client.config.unit_scale)
        return 0

    return _run_with_client(args, action)


def _cmd_trade(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        operation = {
            "buy": client.buy_tokens,
            "sell": client.sell_tokens,
            "contribute": client.contribute,
        }[args.cmd]
        result = await operation(args.project, args.amount)
        print(f"Signature: {result.signature}")
        _print_project(result.record, client.config.unit_scale)
        return 0

    return _run_with_client(args, action)


def _cmd_milestone_add(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        result = await client.add_milestone(args.project, args.title, args.description, args.amount)
        print(f"Signature: {result.signature}")
        _print_milestone(result.record, client.config.unit_scale)
        return 0

    return _run_with_client(args, action)


def _cmd_milestone_complete(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        result = await client.complete_milestone(args.project, args.id)
        print(f"Signature: {result.signature}")
        _print_milestone(result.record, client.config.unit_scale)
        return 0

    return _run_with_client(args, action)


def _cmd_milestone_list(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        milestones = await client.list_milestones(args.project)
        if not milestones:
            print("No milestones")
        for milestone in milestones:
            _print_milestone(milestone, client.config.unit_scale)
        return 0

    return _run_with_client(args, action)


def _cmd_proposal_create(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        result = await client.create_proposal(args.project, args.title, args.description, args.milestone)
        print(f"Signature: {result.signature}")
        _print_proposal(result.record, client.config.unit_scale, client.now())
        return 0

    return _run_with_client(args, action)


def _cmd_proposal_vote(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        result = await client.vote(args.project, args.index, args.approve)
        print(f"Signature: {result.signature}")
        _print_proposal(result.record, client.config.unit_scale, client.now())
        return 0

    return _run_with_client(args, action)


def _cmd_proposal_release(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        result = await client.release_funds(args.project, args.index)
        print(f"Signature: {result.signature}")
        _print_proposal(result.record, client.config.unit_scale, client.now())
        return 0

    return _run_with_client(args, action)


def _cmd_proposal_list(args: argparse.Namespace) -> int:
    async def action(client: FundingClient) -> int:
        proposals = await client.list_proposals(args.project)
        if not proposals:
            print("No proposals")
        now = client.now()
        for proposal in proposals:
            _print_proposal(proposal, client.config.unit_scale, now)
        return 0

    return _run_with_client(args, action)


def _pubkey_arg(value: str) -> str:
    try:
        as_pubkey(value)
    except InvalidInput as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    return value


def _add_project_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--project", required=True, type=_pubkey_arg, help="Project account address")


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog=os.path.basename(sys.argv[0]))
    parser.add_argument("--config", help="Path to unicorn.toml")
    parser.add_argument("--cluster", choices=sorted(CLUSTER_URLS), help="Cluster moniker")
    parser.add_argument("--rpc-url", help="Override RPC URL")
    parser.add_argument("--program-id", help="Override program ID")
    parser.add_argument("--payer", help="Payer/authority keypair path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log client activity to stderr")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_config = sub.add_parser("config", help="Manage client configuration")
    p_config_sub = p_config.add_subparsers(dest="config_cmd", required=True)
    p_config_init = p_config_sub.add_parser("init", help="Write a unicorn.toml")
    p_config_init.add_argument("--out", help="Output path (default: unicorn.toml)")
    p_config_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    p_config_init.set_defaults(func=_cmd_config_init)
    p_config_show = p_config_sub.add_parser("show", help="Print the resolved configuration")
    p_config_show.set_defaults(func=_cmd_config_show)

    p_derive = sub.add_parser("derive", help="Derive a program address")
    p_derive.add_argument("kind", choices=["project", "proposal", "milestone"])
    p_derive.add_argument("--authority", type=_pubkey_arg, help="Project authority (default: payer)")
    p_derive.add_argument("--project", type=_pubkey_arg, help="Project address (proposal/milestone)")
    p_derive.add_argument("--index", type=int, help="Proposal or milestone index")
    p_derive.set_defaults(func=_cmd_derive)

    p_price = sub.add_parser("price", help="Bonding-curve price for raised/goal")
    p_price.add_argument("--raised", required=True, help="Total raised, in units")
    p_price.add_argument("--goal", required=True, help="Funding goal, in units")
    p_price.set_defaults(func=_cmd_price)

    p_curve = sub.add_parser("curve", help="Sample the bonding curve as CSV")
    p_curve.add_argument("--goal", required=True, help="Funding goal, in units")
    p_curve.add_argument("--steps", type=int, default=100, help="Number of intervals")
    p_curve.set_defaults(func=_cmd_curve)

    p_decode = sub.add_parser("decode", help="Decode hex instruction data")
    p_decode.add_argument("data", help="Instruction data as hex")
    p_decode.set_defaults(func=_cmd_decode)

    p_project = sub.add_parser("project", help="Project accounts")
    p_project_sub = p_project.add_subparsers(dest="project_cmd", required=True)
    p_project_show = p_project_sub.add_parser("show", help="Fetch and print a project")
    p_project_show.add_argument("--address", type=_pubkey_arg, help="Project address")
    p_project_show.add_argument("--authority", type=_pubkey_arg, help="Project authority")
    p_project_show.set_defaults(func=_cmd_project_show)
    p_project_init = p_project_sub.add_parser("init", help="Create a project and its token mint")
    p_project_init.add_argument("--name", required=True, help="Project name (<= 32 bytes)")
    p_project_init.add_argument("--symbol", required=True, help="Token symbol (<= 8 bytes)")
    p_project_init.add_argument("--goal", required=True, help="Funding goal, in units")
    p_project_init.set_defaults(func=_cmd_project_init)

    for name, help_text in (
        ("buy", "Buy project tokens"),
        ("sell", "Sell project tokens"),
        ("contribute", "Contribute to a project"),
    ):
        p_trade = sub.add_parser(name, help=help_text)
        _add_project_arg(p_trade)
        p_trade.add_argument("--amount", required=True, help="Amount, in units")
        p_trade.set_defaults(func=_cmd_trade)

    p_milestone = sub.add_parser("milestone", help="Project milestones")
    p_milestone_sub = p_milestone.add_subparsers(dest="milestone_cmd", required=True)
    p_milestone_add = p_milestone_sub.add_parser("add", help="Add a milestone")
    _add_project_arg(p_milestone_add)
    p_milestone_add.add_argument("--title", required=True, help="Title (<= 32 bytes)")
    p_milestone_add.add_argument("--description", default="", help="Description (<= 256 bytes)")
    p_milestone_add.add_argument("--amount", required=True, help="Amount, in units")
    p_milestone_add.set_defaults(func=_cmd_milestone_add)
    p_milestone_complete = p_milestone_sub.add_parser("complete", help="Mark a milestone completed")
    _add_project_arg(p_milestone_complete)
    p_milestone_complete.add_argument("--id", type=int, required=True, help="Milestone index")
    p_milestone_complete.set_defaults(func=_cmd_milestone_complete)
    p_milestone_list = p_milestone_sub.add_parser("list", help="List milestones")
    _add_project_arg(p_milestone_list)
    p_milestone_list.set_defaults(func=_cmd_milestone_list)

    p_proposal = sub.add_parser("proposal", help="Funding proposals")
    p_proposal_sub = p_proposal.add_subparsers(dest="proposal_cmd", required=True)
    p_proposal_create = p_proposal_sub.add_parser("create", help="Propose releasing a milestone's funds")
    _add_project_arg(p_proposal_create)
    p_proposal_create.add_argument("--title", required=True, help="Title (<= 32 bytes)")
    p_proposal_create.add_argument("--description", default="", help="Description (<= 256 bytes)")
    p_proposal_create.add_argument("--milestone", type=int, required=True, help="Milestone index")
    p_proposal_create.set_defaults(func=_cmd_proposal_create)
    p_proposal_vote = p_proposal_sub.add_parser(
        "vote",
        help=f"Vote on an open proposal ({VOTING_WINDOW_SECONDS // 3600}h window)",
    )
    _add_project_arg(p_proposal_vote)
    p_proposal_vote.add_argument("--index", type=int, required=True, help="Proposal index")
    vote_group = p_proposal_vote.add_mutually_exclusive_group(required=True)
    vote_group.add_argument("--yes", dest="approve", action="store_true", help="Vote yes")
    vote_group.add_argument("--no", dest="approve", action="store_false", help="Vote no")
    p_proposal_vote.set_defaults(func=_cmd_proposal_vote)
    p_proposal_release = p_proposal_sub.add_parser("release", help="Release funds for a passed proposal")
    _add_project_arg(p_proposal_release)
    p_proposal_release.add_argument("--index", type=int, required=True, help="Proposal index")
    p_proposal_release.set_defaults(func=_cmd_proposal_release)
    p_proposal_list = p_proposal_sub.add_parser("list", help="List proposals")
    _add_project_arg(p_proposal_list)
    p_proposal_list.set_defaults(func=_cmd_proposal_list)

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except (UnicornError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
