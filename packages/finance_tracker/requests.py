"""Request variants accepted by the deduplication actions.

Each action is its own Pydantic model tagged by ``action``; ``parse_request``
turns an untrusted mapping (an HTTP body, a JSON file) into exactly one of
them. Consumers dispatch with ``match`` over the variant classes.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from .config import DEFAULT_THRESHOLD, validate_threshold


class InvalidRequestError(ValueError):
    """A request was rejected before any work was done."""


class ConfirmationRequiredError(InvalidRequestError):
    """A destructive action was requested without ``confirm=True``."""


_MODEL_CONFIG = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class FixInstruction(BaseModel):
    """Manual consolidation target: move ``transaction_ids`` onto a merchant."""

    model_config = _MODEL_CONFIG

    group_id: str = Field(alias="groupId")
    canonical_merchant: str = Field(alias="canonicalMerchant")
    transaction_ids: tuple[str, ...] = Field(alias="transactionIds", min_length=1)

    @field_validator("canonical_merchant")
    @classmethod
    def _merchant_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("canonicalMerchant must be non-empty")
        return v

    @field_validator("transaction_ids")
    @classmethod
    def _ids_non_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if any(not i or not i.strip() for i in v):
            raise ValueError("transactionIds must not contain empty ids")
        return v


class _ThresholdMixin(BaseModel):
    model_config = _MODEL_CONFIG

    threshold: float = DEFAULT_THRESHOLD

    @field_validator("threshold", mode="before")
    @classmethod
    def _threshold_in_band(cls, v: Any) -> float:
        return validate_threshold(v)


class Analyze(_ThresholdMixin):
    action: Literal["analyze"] = "analyze"


class Consolidate(_ThresholdMixin):
    action: Literal["consolidate"] = "consolidate"


class Fix(BaseModel):
    model_config = _MODEL_CONFIG

    action: Literal["fix"] = "fix"
    fixes: tuple[FixInstruction, ...] = Field(min_length=1)


class MergeNormalized(BaseModel):
    model_config = _MODEL_CONFIG

    action: Literal["merge_normalized"] = "merge_normalized"
    confirm: bool = False
    auto_fix: bool = Field(default=True, alias="autoFix")


class MigrateIdentities(BaseModel):
    model_config = _MODEL_CONFIG

    action: Literal["migrate_identities"] = "migrate_identities"
    confirm: bool = False


Request = Annotated[
    Analyze | Fix | Consolidate | MergeNormalized | MigrateIdentities,
    Field(discriminator="action"),
]

_REQUEST_ADAPTER: TypeAdapter[Request] = TypeAdapter(Request)


def parse_request(payload: Mapping[str, Any]) -> Request:
    """Validate ``payload`` into a request variant or raise ``InvalidRequestError``."""

    try:
        return _REQUEST_ADAPTER.validate_python(dict(payload))
    except ValidationError as exc:
        raise InvalidRequestError(str(exc)) from exc


def parse_fixes(items: Any) -> Fix:
    """Validate a bare list of fix instructions (the whole list, up front)."""

    try:
        return Fix.model_validate({"fixes": items})
    except ValidationError as exc:
        raise InvalidRequestError(str(exc)) from exc


def require_confirmation(request: MergeNormalized | MigrateIdentities) -> None:
    if not request.confirm:
        raise ConfirmationRequiredError(
            f"{request.action} is destructive and requires confirm=True"
        )


__all__ = [
    "Analyze",
    "ConfirmationRequiredError",
    "Consolidate",
    "Fix",
    "FixInstruction",
    "InvalidRequestError",
    "MergeNormalized",
    "MigrateIdentities",
    "Request",
    "parse_fixes",
    "parse_request",
    "require_confirmation",
]
