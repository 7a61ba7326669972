"""Domain listing and backup endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from sequencer.core.modules.sequence.models import FormatInfo, SequenceExport
from sequencer.web.deps import AppDep
from sequencer.web.openapi import ErrorResponse

router = APIRouter(tags=["domains"])


class CountResponse(BaseModel):
    count: int = Field(..., description="Number of sequences affected", ge=0)


@router.get(
    "/domains",
    summary="List domains",
    description="Domains with their built-in and configured sequence keys.",
    operation_id="listDomains",
)
async def list_domains(app: AppDep) -> dict[str, list[str]]:
    return await app.list_domains()


@router.get(
    "/formats",
    summary="List code layouts",
    description="Catalog of layouts and templates with an example code for today.",
    operation_id="listFormats",
)
async def list_formats(app: AppDep) -> list[FormatInfo]:
    return app.list_formats()


@router.delete(
    "/domains/{domain}",
    summary="Reset domain",
    description="Remove every sequence configuration and counter of a domain.",
    operation_id="resetDomain",
    responses={400: {"model": ErrorResponse, "description": "Invalid domain name"}},
)
async def reset_domain(domain: str, app: AppDep) -> CountResponse:
    return CountResponse(count=await app.reset_domain(domain))


@router.get(
    "/export",
    summary="Export all sequences",
    description="Backup of every configured sequence: configuration, counter and used codes.",
    operation_id="exportSequences",
)
async def export_sequences(app: AppDep) -> SequenceExport:
    return await app.export_sequences()


@router.get(
    "/domains/{domain}/export",
    summary="Export domain sequences",
    operation_id="exportDomainSequences",
    responses={400: {"model": ErrorResponse, "description": "Invalid domain name"}},
)
async def export_domain_sequences(domain: str, app: AppDep) -> SequenceExport:
    return await app.export_sequences(domain)


@router.post(
    "/import",
    summary="Import sequences",
    description="Restore sequences from an export, replacing configurations and counters with the same keys.",
    operation_id="importSequences",
    responses={400: {"model": ErrorResponse, "description": "Invalid configuration in export"}},
)
async def import_sequences(export: SequenceExport, app: AppDep) -> CountResponse:
    return CountResponse(count=await app.import_sequences(export))
