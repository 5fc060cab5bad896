"""Client configuration: TOML file, environment, and Solana CLI defaults."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from solders.keypair import Keypair

from .constants import (
    DEFAULT_PROGRAM_ID,
    MINT_RENT_LAMPORTS,
    SELL_COMPUTE_UNITS,
    UNIT_SCALE,
    VOTING_WINDOW_SECONDS,
)
from .errors import InvalidInput
from .pda import as_pubkey

DEFAULT_CONFIG_NAME = "unicorn.toml"

CLUSTER_URLS: Dict[str, str] = {
    "localnet": "http://127.0.0.1:8899",
    "devnet": "https://api.devnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
}

COMMITMENTS = {"processed", "confirmed", "finalized"}

ENV_RPC_URL = "UNICORN_RPC_URL"
ENV_PROGRAM_ID = "UNICORN_PROGRAM_ID"
ENV_PAYER = "UNICORN_PAYER_KEYPAIR"


@dataclass(frozen=True)
class ClientConfig:
    """Deployment settings injected into ``FundingClient``."""

    rpc_url: str = CLUSTER_URLS["devnet"]
    program_id: str = DEFAULT_PROGRAM_ID
    payer: Optional[str] = None
    commitment: str = "confirmed"
    unit_scale: int = UNIT_SCALE
    voting_window: int = VOTING_WINDOW_SECONDS
    mint_rent_lamports: int = MINT_RENT_LAMPORTS
    sell_compute_units: int = SELL_COMPUTE_UNITS
    price_tolerance: Decimal = Decimal(0)
    strict_prices: bool = False
    confirm_timeout: float = 60.0

    def __post_init__(self) -> None:
        as_pubkey(self.program_id, "program_id")
        if self.commitment not in COMMITMENTS:
            raise InvalidInput("commitment must be processed, confirmed, or finalized")
        if not isinstance(self.unit_scale, int) or self.unit_scale <= 0:
            raise InvalidInput("unit_scale must be a positive integer")
        if self.voting_window < 0:
            raise InvalidInput("voting_window must be >= 0")
        if self.price_tolerance < 0:
            raise InvalidInput("price_tolerance must be >= 0")


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ImportError:  # pragma: no cover
        import tomli as tomllib  # type: ignore
    return tomllib.loads(path.read_text())


def load_solana_cli_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = os.environ if env is None else env
    path = env.get("SOLANA_CONFIG") or env.get("SOLANA_CONFIG_FILE")
    if path:
        cfg_path = Path(path)
    else:
        cfg_path = Path.home() / ".config" / "solana" / "cli" / "config.yml"
    try:
        text = cfg_path.read_text()
    except OSError:
        return {}
    cfg: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        value = value.strip().strip("\"'")
        if key:
            cfg[key] = value
    return cfg


def _table(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidInput(f"{name} must be a number") from exc


def load_config(
    path: str | Path | None = None,
    *,
    cluster: Optional[str] = None,
    rpc_url: Optional[str] = None,
    program_id: Optional[str] = None,
    payer: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ClientConfig:
    """Resolve settings: arguments > environment > TOML file > Solana CLI > defaults."""
    env = os.environ if env is None else env
    file_data: Dict[str, Any] = {}
    if path is not None:
        cfg_path = Path(path)
        if not cfg_path.exists():
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
        file_data = _load_toml(cfg_path)
    elif Path(DEFAULT_CONFIG_NAME).exists():
        cfg_path = Path(DEFAULT_CONFIG_NAME)
        file_data = _load_toml(cfg_path)
    else:
        cfg_path = None

    cluster_table = _table(file_data, "cluster")
    program_table = _table(file_data, "program")
    solana_cfg = load_solana_cli_config(env)

    if cluster is not None and cluster not in CLUSTER_URLS:
        raise InvalidInput(f"unknown cluster '{cluster}' (expected {', '.join(CLUSTER_URLS)})")

    effective_rpc = (
        rpc_url
        or (CLUSTER_URLS[cluster] if cluster else None)
        or _str(env.get(ENV_RPC_URL))
        or _str(cluster_table.get("rpc_url"))
        or CLUSTER_URLS.get(_str(cluster_table.get("cluster")) or "")
        or _str(solana_cfg.get("json_rpc_url"))
        or CLUSTER_URLS["devnet"]
    )
    effective_program = (
        program_id
        or _str(env.get(ENV_PROGRAM_ID))
        or _str(program_table.get("program_id"))
        or DEFAULT_PROGRAM_ID
    )
    effective_payer = (
        payer
        or _str(env.get(ENV_PAYER))
        or _str(cluster_table.get("payer"))
        or _str(solana_cfg.get("keypair_path"))
    )
    if effective_payer and cfg_path is not None and _str(cluster_table.get("payer")) == effective_payer:
        effective_payer = resolve_relative(cfg_path, effective_payer)

    config = ClientConfig(rpc_url=effective_rpc, program_id=effective_program, payer=effective_payer)
    overrides: Dict[str, Any] = {}
    commitment = _str(cluster_table.get("commitment")) or _str(solana_cfg.get("commitment"))
    if commitment:
        overrides["commitment"] = commitment
    for key in ("unit_scale", "voting_window", "mint_rent_lamports", "sell_compute_units"):
        if key in program_table:
            value = program_table[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInput(f"program.{key} must be an integer")
            overrides[key] = value
    if "price_tolerance" in program_table:
        overrides["price_tolerance"] = _decimal(program_table["price_tolerance"], "program.price_tolerance")
    if "strict_prices" in program_table:
        overrides["strict_prices"] = bool(program_table["strict_prices"])
    if "confirm_timeout" in cluster_table:
        overrides["confirm_timeout"] = float(cluster_table["confirm_timeout"])
    return replace(config, **overrides) if overrides else config


def resolve_relative(config_path: Path, raw_path: str) -> str:
    candidate = Path(raw_path).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((config_path.resolve().parent / candidate).resolve())


def write_config(path: Path, config: ClientConfig) -> None:
    lines = ["[cluster]", f"rpc_url = \"{config.rpc_url}\""]
    if config.payer:
        lines.append(f"payer = \"{config.payer}\"")
    lines.append(f"commitment = \"{config.commitment}\"")
    lines.append(f"confirm_timeout = {config.confirm_timeout}")
    lines.append("")
    lines.append("[program]")
    lines.append(f"program_id = \"{config.program_id}\"")
    lines.append(f"unit_scale = {config.unit_scale}")
    lines.append(f"voting_window = {config.voting_window}")
    lines.append(f"mint_rent_lamports = {config.mint_rent_lamports}")
    lines.append(f"sell_compute_units = {config.sell_compute_units}")
    lines.append(f"price_tolerance = \"{config.price_tolerance}\"")
    lines.append(f"strict_prices = {'true' if config.strict_prices else 'false'}")
    path.write_text("\n".join(lines) + "\n")


def load_keypair(path: str | Path) -> Keypair:
    keypair_path = Path(path).expanduser()
    if not keypair_path.exists():
        raise FileNotFoundError(f"Keypair file not found: {keypair_path}")
    raw = json.loads(keypair_path.read_text())
    if not isinstance(raw, list) or len(raw) != 64:
        raise InvalidInput(f"{keypair_path} is not a 64-byte Solana keypair file")
    return Keypair.from_bytes(bytes(raw))
