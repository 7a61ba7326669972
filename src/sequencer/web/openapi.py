from typing import Any

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from pydantic import BaseModel, Field


def set_custom_openapi(app: FastAPI) -> None:
    def custom_openapi() -> dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        app.openapi_schema = get_openapi(
            title="Sequencer API",
            version="0.1.0",
            summary="Document and entity numbering for ERP modules",
            routes=app.routes,
        )
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]


class ErrorResponse(BaseModel):
    """Standard error response format."""

    message: str = Field(..., description="Human-readable error message")
    type: str = Field(..., description="Machine-readable error type")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"message": "Sequence 'sales/invoice' is disabled", "type": "sequence_disabled"},
                {"message": "Sequence 'sales/offer' is not configured", "type": "not_found"},
                {"message": "Unknown placeholder '{week}' in template", "type": "configuration_error"},
            ]
        }
    }
