"""
Typed create/update requests for notes.

Responsibility:
    Convert caller payloads (decoded JSON, form data) into validated,
    immutable request objects before any transaction opens.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Engine-owned fields (document number and its parts, status, actors,
      artifact binding) are never accepted from a caller.
    - Every amount is a Decimal parsed from its string form; floats never
      reach the calculator.
    - gross_premium > 0 after rounding to two places; percentages in
      [0, 100]; levies >= 0.

Failure modes:
    - DocumentNumberImmutableError if document_number is supplied.
    - ForbiddenFieldError for any other engine-owned field.
    - InvalidAmountError / InvalidPercentageError / NegativeLevyError.
    - MissingInsurerError for a CN with neither insurer nor shares.
    - InvalidCoInsuranceSplit for malformed share lists (the total is
      checked by the splitter against the configured tolerance).
    - ValidationError for unknown keys or missing references.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from notes_kernel.db.types import (
    PERCENTAGE_DECIMAL_PLACES,
    fits_percentage_scale,
    round_money,
    to_decimal,
)
from notes_kernel.domain.calculator import Levies
from notes_kernel.domain.coinsurance import DEFAULT_TOLERANCE, ShareInput
from notes_kernel.domain.lifecycle import NoteType
from notes_kernel.exceptions import (
    DocumentNumberImmutableError,
    ForbiddenFieldError,
    InvalidAmountError,
    InvalidCoInsuranceSplit,
    InvalidPercentageError,
    MissingInsurerError,
    NegativeLevyError,
    ValidationError,
)

ENGINE_OWNED_FIELDS = frozenset({
    "document_number",
    "sequence_number",
    "sequence_year",
    "status",
    "prepared_by",
    "authorized_by",
    "issued_by",
    "artifact_ref",
    "artifact_hash",
})

UPDATE_FORBIDDEN_FIELDS = ENGINE_OWNED_FIELDS | {"note_type"}

LEVY_NAMES = ("niacom", "ncrib", "ed_tax")

# Fields frozen once the note leaves Draft.  "coinsurance" stands for the
# whole share list.
FINANCIAL_UPDATE_FIELDS = frozenset({
    "client_id",
    "policy_id",
    "insurer_id",
    "gross_premium",
    "brokerage_pct",
    "vat_pct",
    "agent_commission_pct",
    "levy_niacom",
    "levy_ncrib",
    "levy_ed_tax",
    "coinsurance",
})

ADMIN_UPDATE_FIELDS = frozenset({"payable_bank_account_id", "narration"})

_CREATE_KEYS = frozenset({
    "note_type",
    "client_id",
    "policy_id",
    "insurer_id",
    "gross_premium",
    "brokerage_pct",
    "vat_pct",
    "agent_commission_pct",
    "levies",
    "coinsurance",
    "currency",
}) | ADMIN_UPDATE_FIELDS

_UPDATE_KEYS = (_CREATE_KEYS - {"note_type", "currency"})

_HUNDRED = Decimal("100")


# =============================================================================
# Field parsers
# =============================================================================


def _reject_forbidden(data: Mapping[str, Any], forbidden: frozenset[str]) -> None:
    if "document_number" in data:
        raise DocumentNumberImmutableError(data["document_number"])
    supplied = sorted(key for key in data if key in forbidden)
    if supplied:
        raise ForbiddenFieldError(supplied)


def _reject_unknown(data: Mapping[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(key for key in data if key not in allowed)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}")


def parse_gross(raw: Any) -> Decimal:
    if raw is None or raw == "":
        raise InvalidAmountError("gross_premium", raw, "is required")
    try:
        value = round_money(to_decimal(raw))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError("gross_premium", raw, "must be numeric") from None
    if value <= 0:
        raise InvalidAmountError("gross_premium", raw)
    return value


def parse_percentage(name: str, raw: Any) -> Decimal:
    try:
        value = to_decimal(raw)
    except (InvalidOperation, ValueError):
        raise InvalidPercentageError(name, raw) from None
    if value < 0 or value > _HUNDRED:
        raise InvalidPercentageError(name, raw)
    if not fits_percentage_scale(value):
        raise InvalidPercentageError(
            name, raw, f"must have at most {PERCENTAGE_DECIMAL_PLACES} decimal places",
        )
    return value


def parse_levy(name: str, raw: Any) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0.00")
    try:
        value = to_decimal(raw)
    except (InvalidOperation, ValueError):
        raise NegativeLevyError(name, raw) from None
    if value < 0:
        raise NegativeLevyError(name, raw)
    return round_money(value)


def parse_levies(raw: Any) -> Levies:
    if raw is None:
        return Levies(Decimal("0.00"), Decimal("0.00"), Decimal("0.00"))
    if not isinstance(raw, Mapping):
        raise ValidationError("levies must be an object with niacom, ncrib, ed_tax")
    unknown = sorted(set(raw) - set(LEVY_NAMES))
    if unknown:
        raise ValidationError(f"Unknown levies: {', '.join(unknown)}")
    return Levies(**{name: parse_levy(name, raw.get(name)) for name in LEVY_NAMES})


def _parse_ref(name: str, raw: Any, required: bool) -> str | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if required:
            raise ValidationError(f"{name} is required")
        return None
    return str(raw).strip()


def parse_shares(raw: Any) -> tuple[ShareInput, ...]:
    """
    Parse a co-insurance list of {"insurer_id", "percentage"} mappings.

    Each percentage must be in (0, 100]; an insurer may appear only once.
    """
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise InvalidCoInsuranceSplit(
            None, DEFAULT_TOLERANCE, reason="coinsurance must be a list of shares",
        )
    shares: list[ShareInput] = []
    seen: set[str] = set()
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise InvalidCoInsuranceSplit(
                None, DEFAULT_TOLERANCE, reason=f"Share #{index + 1} is not an object",
            )
        insurer_id = _parse_ref(f"coinsurance[{index}].insurer_id", item.get("insurer_id"), True)
        percentage = parse_percentage(
            f"coinsurance[{index}].percentage", item.get("percentage"),
        )
        if percentage == 0:
            raise InvalidCoInsuranceSplit(
                None, DEFAULT_TOLERANCE,
                reason=f"Share for insurer {insurer_id} must be greater than 0%",
            )
        if insurer_id in seen:
            raise InvalidCoInsuranceSplit(
                None, DEFAULT_TOLERANCE,
                reason=f"Insurer {insurer_id} appears more than once",
            )
        seen.add(insurer_id)
        shares.append(ShareInput(insurer_id=insurer_id, percentage=percentage))
    return tuple(shares)


def _parse_note_type(raw: Any) -> NoteType:
    try:
        return NoteType(str(raw).strip().upper())
    except ValueError:
        raise ValidationError(f"note_type must be CN or DN, got {raw!r}") from None


def _parse_currency(raw: Any) -> str | None:
    if raw is None:
        return None
    code = str(raw).strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"currency must be a 3-letter code, got {raw!r}")
    return code


def check_insurer_rules(
    note_type: NoteType,
    insurer_id: str | None,
    shares: tuple[ShareInput, ...],
) -> None:
    if note_type == NoteType.CN and insurer_id is None and not shares:
        raise MissingInsurerError(note_type.value)
    if note_type == NoteType.DN and shares:
        raise InvalidCoInsuranceSplit(
            None, DEFAULT_TOLERANCE,
            reason="Debit Notes cannot carry co-insurance shares",
        )


# =============================================================================
# Requests
# =============================================================================


@dataclass(frozen=True)
class NoteRequest:
    """
    Validated input for creating a note.

    ``vat_pct`` / ``agent_commission_pct`` / ``currency`` left as None take
    the configured defaults when the note is created.
    """

    note_type: NoteType
    client_id: str
    policy_id: str
    gross_premium: Decimal
    brokerage_pct: Decimal
    insurer_id: str | None = None
    vat_pct: Decimal | None = None
    agent_commission_pct: Decimal | None = None
    levies: Levies = field(default_factory=Levies)
    coinsurance: tuple[ShareInput, ...] = ()
    currency: str | None = None
    payable_bank_account_id: str | None = None
    narration: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NoteRequest:
        _reject_forbidden(data, ENGINE_OWNED_FIELDS)
        _reject_unknown(data, _CREATE_KEYS)

        note_type = _parse_note_type(data.get("note_type"))
        if data.get("brokerage_pct") is None:
            raise InvalidPercentageError("brokerage_pct", None)

        insurer_id = _parse_ref("insurer_id", data.get("insurer_id"), False)
        shares = parse_shares(data.get("coinsurance"))
        check_insurer_rules(note_type, insurer_id, shares)

        return cls(
            note_type=note_type,
            client_id=_parse_ref("client_id", data.get("client_id"), True),
            policy_id=_parse_ref("policy_id", data.get("policy_id"), True),
            insurer_id=insurer_id,
            gross_premium=parse_gross(data.get("gross_premium")),
            brokerage_pct=parse_percentage("brokerage_pct", data["brokerage_pct"]),
            vat_pct=(
                parse_percentage("vat_pct", data["vat_pct"])
                if data.get("vat_pct") is not None else None
            ),
            agent_commission_pct=(
                parse_percentage("agent_commission_pct", data["agent_commission_pct"])
                if data.get("agent_commission_pct") is not None else None
            ),
            levies=parse_levies(data.get("levies")),
            coinsurance=shares,
            currency=_parse_currency(data.get("currency")),
            payable_bank_account_id=_parse_ref(
                "payable_bank_account_id", data.get("payable_bank_account_id"), False,
            ),
            narration=data.get("narration"),
        )


@dataclass(frozen=True)
class NoteUpdate:
    """
    Validated partial update.

    ``changes`` maps column-level names (levies flattened to
    ``levy_niacom`` etc., the share list under ``coinsurance``) to parsed
    values.  Only keys the caller supplied are present.
    """

    changes: Mapping[str, Any]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NoteUpdate:
        _reject_forbidden(data, UPDATE_FORBIDDEN_FIELDS)
        _reject_unknown(data, _UPDATE_KEYS)

        changes: dict[str, Any] = {}
        for name in ("client_id", "policy_id"):
            if name in data:
                changes[name] = _parse_ref(name, data[name], True)
        if "insurer_id" in data:
            changes["insurer_id"] = _parse_ref("insurer_id", data["insurer_id"], False)
        if "gross_premium" in data:
            changes["gross_premium"] = parse_gross(data["gross_premium"])
        for name in ("brokerage_pct", "vat_pct", "agent_commission_pct"):
            if name in data:
                changes[name] = parse_percentage(name, data[name])
        if "levies" in data:
            raw = data["levies"]
            if not isinstance(raw, Mapping):
                raise ValidationError("levies must be an object with niacom, ncrib, ed_tax")
            unknown = sorted(set(raw) - set(LEVY_NAMES))
            if unknown:
                raise ValidationError(f"Unknown levies: {', '.join(unknown)}")
            for name in LEVY_NAMES:
                if name in raw:
                    changes[f"levy_{name}"] = parse_levy(name, raw[name])
        if "coinsurance" in data:
            changes["coinsurance"] = parse_shares(data["coinsurance"])
        if "payable_bank_account_id" in data:
            changes["payable_bank_account_id"] = _parse_ref(
                "payable_bank_account_id", data["payable_bank_account_id"], False,
            )
        if "narration" in data:
            changes["narration"] = data["narration"]
        return cls(changes=changes)

    @property
    def financial_changes(self) -> dict[str, Any]:
        return {k: v for k, v in self.changes.items() if k in FINANCIAL_UPDATE_FIELDS}

    @property
    def admin_changes(self) -> dict[str, Any]:
        return {k: v for k, v in self.changes.items() if k in ADMIN_UPDATE_FIELDS}

    def is_empty(self) -> bool:
        return not self.changes
