"""Fixed-size account layouts for Project, Proposal, and Milestone records.

Each layout is a field list of ``(name, width, kind)`` in on-chain order.
One generic routine decodes (and, for tests and fakes, encodes) every
record, so the byte tables below are the single source of offsets.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields as dataclass_fields
from typing import Any, Dict, Generic, Sequence, Tuple, Type, TypeVar

from solders.pubkey import Pubkey

from .constants import (
    DESCRIPTION_MAX,
    MILESTONE_ACCOUNT_SIZE,
    NAME_MAX,
    PROJECT_ACCOUNT_SIZE,
    PROPOSAL_ACCOUNT_SIZE,
    SYMBOL_MAX,
    TITLE_MAX,
)
from .errors import MalformedAccount
from .records import Milestone, Project, Proposal
from .units import check_int, check_uint, encode_text

T = TypeVar("T")

_STRUCT_CODES = {
    "pubkey": "32s",
    "u8": "B",
    "bool": "B",
    "u64": "Q",
    "i64": "q",
}


@dataclass(frozen=True)
class Field:
    name: str
    width: int
    kind: str

    @property
    def struct_code(self) -> str:
        if self.kind == "text":
            return f"{self.width}s"
        return _STRUCT_CODES[self.kind]


class Layout(Generic[T]):
    def __init__(
        self,
        record_type: Type[T],
        fields: Sequence[Field],
        *,
        expected_size: int | None = None,
    ) -> None:
        self.record_type = record_type
        self.fields: Tuple[Field, ...] = tuple(fields)
        self.format = "<" + "".join(f.struct_code for f in self.fields)
        self.size = struct.calcsize(self.format)
        declared = sum(f.width for f in self.fields)
        if declared != self.size:
            raise ValueError(f"{record_type.__name__} layout widths sum to {declared}, struct is {self.size}")
        if expected_size is not None and self.size != expected_size:
            raise ValueError(f"{record_type.__name__} layout is {self.size} bytes, account is {expected_size}")
        self._record_fields = {f.name for f in dataclass_fields(record_type)}  # type: ignore[arg-type]
        missing = [f.name for f in self.fields if f.name not in self._record_fields]
        if missing:
            raise ValueError(f"{record_type.__name__} has no attribute(s): {', '.join(missing)}")

    @property
    def name(self) -> str:
        return self.record_type.__name__

    def offsets(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        offset = 0
        for f in self.fields:
            out[f.name] = offset
            offset += f.width
        return out

    def decode(self, raw: bytes, **extra: Any) -> T:
        data = bytes(raw)
        if len(data) < self.size:
            raise MalformedAccount(
                f"{self.name} account too small ({len(data)} bytes); expected at least {self.size}"
            )
        values = struct.unpack_from(self.format, data, 0)
        kwargs: Dict[str, Any] = {}
        for f, value in zip(self.fields, values):
            kwargs[f.name] = self._decode_value(f, value)
        kwargs.update(extra)
        return self.record_type(**kwargs)

    def encode(self, record: T) -> bytes:
        values = [self._encode_value(f, getattr(record, f.name)) for f in self.fields]
        return struct.pack(self.format, *values)

    def _decode_value(self, f: Field, value: Any) -> Any:
        if f.kind == "pubkey":
            return Pubkey.from_bytes(value)
        if f.kind == "text":
            try:
                return value.rstrip(b"\x00").decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedAccount(f"{self.name}.{f.name} is not valid UTF-8") from exc
        if f.kind == "bool":
            return value != 0
        return value

    def _encode_value(self, f: Field, value: Any) -> Any:
        label = f"{self.name}.{f.name}"
        if f.kind == "pubkey":
            return bytes(value)
        if f.kind == "text":
            # struct zero-pads short byte strings to the field width
            return encode_text(value, f.width, label)
        if f.kind == "bool":
            return 1 if value else 0
        if f.kind == "u8":
            return check_uint(value, 8, label)
        if f.kind == "u64":
            return check_uint(value, 64, label)
        if f.kind == "i64":
            return check_int(value, 64, label)
        raise ValueError(f"unknown field kind: {f.kind}")


PROJECT_LAYOUT: Layout[Project] = Layout(
    Project,
    [
        Field("authority", 32, "pubkey"),
        Field("name", NAME_MAX, "text"),
        Field("symbol", SYMBOL_MAX, "text"),
        Field("funding_goal", 8, "u64"),
        Field("total_raised", 8, "u64"),
        Field("token_price", 8, "u64"),
        Field("is_active", 1, "bool"),
        Field("bump", 1, "u8"),
        Field("token_mint", 32, "pubkey"),
        Field("milestone_count", 1, "u8"),
        Field("proposal_count", 1, "u8"),
    ],
    expected_size=PROJECT_ACCOUNT_SIZE,
)

PROPOSAL_LAYOUT: Layout[Proposal] = Layout(
    Proposal,
    [
        Field("creator", 32, "pubkey"),
        Field("title", TITLE_MAX, "text"),
        Field("description", DESCRIPTION_MAX, "text"),
        Field("amount", 8, "u64"),
        Field("milestone_id", 1, "u8"),
        Field("yes_votes", 8, "u64"),
        Field("no_votes", 8, "u64"),
        Field("is_executed", 1, "bool"),
        Field("created_at", 8, "i64"),
        Field("voting_end", 8, "i64"),
    ],
    expected_size=PROPOSAL_ACCOUNT_SIZE,
)

MILESTONE_LAYOUT: Layout[Milestone] = Layout(
    Milestone,
    [
        Field("title", TITLE_MAX, "text"),
        Field("description", DESCRIPTION_MAX, "text"),
        Field("amount", 8, "u64"),
        Field("is_completed", 1, "bool"),
        Field("completed_at", 8, "i64"),
    ],
    expected_size=MILESTONE_ACCOUNT_SIZE,
)


def decode_project(raw: bytes, address: Pubkey | None = None) -> Project:
    return PROJECT_LAYOUT.decode(raw, address=address)


def decode_proposal(raw: bytes, address: Pubkey | None = None, index: int | None = None) -> Proposal:
    return PROPOSAL_LAYOUT.decode(raw, address=address, index=index)


def decode_milestone(raw: bytes, address: Pubkey | None = None, index: int | None = None) -> Milestone:
    return MILESTONE_LAYOUT.decode(raw, address=address, index=index)


def encode_project(project: Project) -> bytes:
    return PROJECT_LAYOUT.encode(project)


def encode_proposal(proposal: Proposal) -> bytes:
    return PROPOSAL_LAYOUT.encode(proposal)


def encode_milestone(milestone: Milestone) -> bytes:
    return MILESTONE_LAYOUT.encode(milestone)
