"""Sequence configuration, counter state and their wire representations."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from sequencer import utils


class ResetFrequency(StrEnum):
    """Calendar period after which a counter restarts from start_from."""

    NEVER = "never"
    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class NumberFormat(StrEnum):
    """Segment layout used when a sequence has no custom template."""

    PREFIX_NUMBER = "prefix-number"
    NUMBER_SUFFIX = "number-suffix"
    PREFIX_NUMBER_SUFFIX = "prefix-number-suffix"


class SequenceConfig(BaseModel):
    """How codes of one sequence are rendered and when its counter restarts."""

    key: str
    prefix: str = ""
    suffix: str = ""
    template: str | None = None  # e.g. "{prefix}-{year}-{number:0000}"; overrides format when set
    format: NumberFormat = NumberFormat.PREFIX_NUMBER
    number_length: int = 4  # Pad width for bare {number} and template-less formats
    separator: str = "-"
    start_from: int = 1
    increment: int = 1
    reset_frequency: ResetFrequency = ResetFrequency.NEVER
    include_check_digit: bool = False
    enabled: bool = True
    description: str = ""


class SequenceConfigUpdate(BaseModel):
    """Partial update of a sequence configuration; unset fields are left unchanged."""

    prefix: str | None = None
    suffix: str | None = None
    template: str | None = None
    format: NumberFormat | None = None
    number_length: int | None = None
    separator: str | None = None
    start_from: int | None = None
    increment: int | None = None
    reset_frequency: ResetFrequency | None = None
    include_check_digit: bool | None = None
    enabled: bool | None = None
    description: str | None = None


class SequenceLayoutUpdate(BaseModel):
    """Layout settings applied to every sequence of a domain at once."""

    format: NumberFormat | None = None
    separator: str | None = None
    number_length: int | None = None


class FormatInfo(BaseModel):
    """One entry of the layout catalog shown in settings screens."""

    name: str
    title: str
    format: NumberFormat | None = Field(None, description="Layout used without a template")
    template: str | None = Field(None, description="Template producing the layout")
    example: str


class SequenceState(BaseModel):
    """Mutable counter state of one sequence."""

    current_number: int | None = None  # Last issued value since the last reset; None if nothing issued yet
    last_reset_at: datetime = Field(default_factory=utils.now)
    used_codes: set[str] = Field(default_factory=set)
    last_code: str | None = None
    revision: int = 0  # Store revision for compare-and-swap

    @field_serializer("used_codes")
    def serialize_used_codes(self, used_codes: set[str]) -> list[str]:
        return sorted(used_codes)


class IssuedNumber(BaseModel):
    """A generated code, flagged when it came from the degraded fallback path."""

    code: str
    degraded: bool = False


class SequenceStats(BaseModel):
    """Usage summary of one sequence for settings screens."""

    domain: str
    key: str
    enabled: bool
    current_number: int | None
    total_issued: int = Field(..., description="Codes issued or reserved since the last reset", ge=0)
    last_code: str | None
    next_code: str | None = Field(None, description="Code the next generate call would return (None when disabled)")
    last_reset_at: datetime
    reset_frequency: ResetFrequency


class ReconcileResult(BaseModel):
    """Outcome of aligning a counter with codes that already exist elsewhere."""

    previous_number: int | None
    current_number: int | None
    max_found: int | None = Field(None, description="Highest counter value parsed from the given codes")
    adjusted: bool
    unmatched: list[str] = Field(default_factory=list, description="Codes that do not match the sequence shape")


class SequenceSnapshot(BaseModel):
    """Portable representation of one sequence: config plus counter state."""

    # Force unified schema for both input/output in OpenAPI
    model_config = ConfigDict(json_schema_mode_override="validation")

    domain: str
    key: str
    config: SequenceConfig
    current_number: int | None
    last_reset_at: datetime
    used_codes: list[str]


class SequenceExport(BaseModel):
    """Backup package of sequences with metadata."""

    model_config = ConfigDict(json_schema_mode_override="validation")

    sequences: list[SequenceSnapshot]
    exported_at: datetime
    format_version: str = "1.0"
