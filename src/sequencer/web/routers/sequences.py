from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from sequencer.core.modules.sequence.models import (
    IssuedNumber,
    ReconcileResult,
    SequenceConfig,
    SequenceConfigUpdate,
    SequenceLayoutUpdate,
    SequenceStats,
)
from sequencer.web.deps import AppDep
from sequencer.web.openapi import ErrorResponse

router = APIRouter(tags=["sequences"])

SEQUENCE_PATH = "/domains/{domain}/sequences/{key}"


class CodeRequest(BaseModel):
    """A single code to reserve, release or validate."""

    code: str = Field(..., description="Code as issued, e.g. INV-2025-0001", min_length=1)


class CodesRequest(BaseModel):
    """A list of codes issued or stored elsewhere."""

    codes: list[str] = Field(..., description="Existing codes")


class CodeCheckResponse(BaseModel):
    code: str
    ok: bool = Field(..., description="Whether the operation applied (or the code is valid)")


class CounterRequest(BaseModel):
    value: int = Field(..., description="Counter value treated as last issued; the next code uses value + increment", ge=0)


class ImportResponse(BaseModel):
    added: int = Field(..., description="Codes newly marked as used", ge=0)


@router.get(
    "/domains/{domain}/sequences",
    summary="List sequences",
    description="Get the configuration of every sequence configured in a domain.",
    operation_id="listSequences",
    responses={
        200: {"description": "List of sequence configurations"},
        400: {"model": ErrorResponse, "description": "Invalid domain name"},
    },
)
async def list_sequences(domain: str, app: AppDep) -> list[SequenceConfig]:
    return await app.list_sequences(domain)


@router.put(
    "/domains/{domain}/sequences",
    summary="Update domain layout",
    description="Apply format, separator and number_length to every built-in and configured sequence of a domain. "
    "Nothing is written if any resulting configuration is invalid.",
    operation_id="updateDomainLayout",
    responses={
        200: {"description": "Updated configurations"},
        400: {"model": ErrorResponse, "description": "Invalid configuration"},
    },
)
async def update_domain_layout(domain: str, changes: SequenceLayoutUpdate, app: AppDep) -> list[SequenceConfig]:
    return await app.update_domain_layout(domain, changes)


@router.get(
    SEQUENCE_PATH,
    summary="Get sequence configuration",
    operation_id="getSequence",
    responses={
        200: {"description": "Sequence configuration"},
        404: {"model": ErrorResponse, "description": "Sequence not configured"},
    },
)
async def get_sequence(domain: str, key: str, app: AppDep) -> SequenceConfig:
    return await app.get_sequence(domain, key)


@router.put(
    SEQUENCE_PATH,
    summary="Update sequence configuration",
    description="Partially update a sequence. Unknown keys are created from the domain default first. "
    "Already issued codes are not rewritten.",
    operation_id="updateSequence",
    responses={
        200: {"description": "Updated configuration"},
        400: {"model": ErrorResponse, "description": "Invalid configuration"},
    },
)
async def update_sequence(domain: str, key: str, changes: SequenceConfigUpdate, app: AppDep) -> SequenceConfig:
    return await app.update_sequence(domain, key, changes)


@router.delete(
    SEQUENCE_PATH,
    summary="Reset sequence",
    description="Restart the counter and clear used codes. With preserve_config=false the configuration is removed too.",
    operation_id="resetSequence",
    status_code=204,
    responses={
        204: {"description": "Sequence reset"},
        404: {"model": ErrorResponse, "description": "Sequence not configured"},
    },
)
async def reset_sequence(
    domain: str,
    key: str,
    app: AppDep,
    preserve_config: Annotated[bool, Query(description="Keep the configuration and only restart the counter")] = True,
) -> None:
    await app.reset_sequence(domain, key, preserve_config)


@router.post(
    f"{SEQUENCE_PATH}/generate",
    summary="Generate codes",
    description="Issue the next code(s). With fallback=true a storage failure returns a timestamp code flagged "
    "as degraded instead of an error.",
    operation_id="generateCodes",
    responses={
        200: {"description": "Issued codes"},
        400: {"model": ErrorResponse, "description": "Invalid batch size or configuration"},
        409: {"model": ErrorResponse, "description": "Sequence disabled or exhausted"},
        503: {"model": ErrorResponse, "description": "Storage unavailable"},
    },
)
async def generate_codes(
    domain: str,
    key: str,
    app: AppDep,
    count: Annotated[int, Query(description="Number of codes to issue", ge=1, le=1000)] = 1,
    fallback: Annotated[bool, Query(description="Return a degraded code when storage fails")] = False,
) -> list[IssuedNumber]:
    return await app.generate(domain, key, count, fallback)


@router.get(
    f"{SEQUENCE_PATH}/preview",
    summary="Preview next codes",
    description="Codes the next generate calls would return. Nothing is issued.",
    operation_id="previewCodes",
    responses={
        200: {"description": "Upcoming codes"},
        409: {"model": ErrorResponse, "description": "Sequence disabled or exhausted"},
    },
)
async def preview_codes(
    domain: str,
    key: str,
    app: AppDep,
    count: Annotated[int, Query(description="Number of codes to preview", ge=1, le=1000)] = 1,
) -> list[str]:
    return await app.preview(domain, key, count)


@router.get(
    f"{SEQUENCE_PATH}/stats",
    summary="Get sequence statistics",
    operation_id="getSequenceStats",
    responses={
        200: {"description": "Sequence statistics"},
        404: {"model": ErrorResponse, "description": "Sequence not configured"},
    },
)
async def get_sequence_stats(domain: str, key: str, app: AppDep) -> SequenceStats:
    return await app.get_stats(domain, key)


@router.put(
    f"{SEQUENCE_PATH}/counter",
    summary="Set counter",
    description="Override the counter value. Use with care: lowering it can only reissue numbers whose codes "
    "are not in the used set.",
    operation_id="setSequenceCounter",
    responses={200: {"description": "Statistics after the change"}},
)
async def set_sequence_counter(domain: str, key: str, req: CounterRequest, app: AppDep) -> SequenceStats:
    return await app.set_counter(domain, key, req.value)


@router.post(
    f"{SEQUENCE_PATH}/reserve",
    summary="Reserve code",
    description="Mark a code as used so it is never generated. ok=false if it was already used.",
    operation_id="reserveCode",
)
async def reserve_code(domain: str, key: str, req: CodeRequest, app: AppDep) -> CodeCheckResponse:
    return CodeCheckResponse(code=req.code, ok=await app.reserve(domain, key, req.code))


@router.post(
    f"{SEQUENCE_PATH}/release",
    summary="Release code",
    description="Remove a code from the used set. ok=false if it was not used.",
    operation_id="releaseCode",
    responses={404: {"model": ErrorResponse, "description": "Sequence not configured"}},
)
async def release_code(domain: str, key: str, req: CodeRequest, app: AppDep) -> CodeCheckResponse:
    return CodeCheckResponse(code=req.code, ok=await app.release(domain, key, req.code))


@router.post(
    f"{SEQUENCE_PATH}/validate",
    summary="Validate code",
    description="Check that a code has the shape the sequence's current configuration produces.",
    operation_id="validateCode",
    responses={404: {"model": ErrorResponse, "description": "Sequence not configured"}},
)
async def validate_code(domain: str, key: str, req: CodeRequest, app: AppDep) -> CodeCheckResponse:
    return CodeCheckResponse(code=req.code, ok=await app.validate(domain, key, req.code))


@router.post(
    f"{SEQUENCE_PATH}/reconcile",
    summary="Reconcile counter",
    description="Raise the counter to the highest number among existing codes of the current period "
    "and mark them used.",
    operation_id="reconcileSequence",
)
async def reconcile_sequence(domain: str, key: str, req: CodesRequest, app: AppDep) -> ReconcileResult:
    return await app.reconcile(domain, key, req.codes)


@router.get(
    f"{SEQUENCE_PATH}/used-codes",
    summary="Export used codes",
    operation_id="exportUsedCodes",
    responses={404: {"model": ErrorResponse, "description": "Sequence not configured"}},
)
async def export_used_codes(domain: str, key: str, app: AppDep) -> list[str]:
    return await app.export_used_codes(domain, key)


@router.post(
    f"{SEQUENCE_PATH}/used-codes",
    summary="Import used codes",
    description="Mark a batch of codes as used.",
    operation_id="importUsedCodes",
)
async def import_used_codes(domain: str, key: str, req: CodesRequest, app: AppDep) -> ImportResponse:
    return ImportResponse(added=await app.import_used_codes(domain, key, req.codes))


@router.post(
    f"{SEQUENCE_PATH}/preview",
    summary="Preview unsaved settings",
    description="Codes the next generate calls would return if the given settings were saved. Nothing is written.",
    operation_id="previewSettings",
    responses={
        200: {"description": "Upcoming codes under the proposed settings"},
        400: {"model": ErrorResponse, "description": "Invalid configuration"},
        409: {"model": ErrorResponse, "description": "Sequence disabled or exhausted"},
    },
)
async def preview_settings(
    domain: str,
    key: str,
    changes: SequenceConfigUpdate,
    app: AppDep,
    count: Annotated[int, Query(description="Number of codes to preview", ge=1, le=1000)] = 1,
) -> list[str]:
    return await app.preview(domain, key, count, changes)
