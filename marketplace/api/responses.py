"""
Response Envelope
Every API response is ``{success, data?, error?, message?, ...}``.
"""

from typing import Any

from fastapi.responses import JSONResponse

from marketplace.errors import MarketplaceError
from marketplace.models import ForkRecord, Template
from marketplace.schemas import ForkRecordResponse, TemplateResponse


def success(data: Any = None, *, message: str | None = None, **extra: Any) -> dict[str, Any]:
    """Build a success envelope."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    body.update(extra)
    return body


def error_response(error: MarketplaceError) -> JSONResponse:
    """Render a typed error as a failure envelope."""
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_dict()},
    )


def template_data(template: Template) -> dict[str, Any]:
    return TemplateResponse.model_validate(template).model_dump(by_alias=True, mode="json")


def templates_data(templates: list[Template]) -> list[dict[str, Any]]:
    return [template_data(t) for t in templates]


def fork_record_data(record: ForkRecord) -> dict[str, Any]:
    return ForkRecordResponse.model_validate(record).model_dump(by_alias=True, mode="json")
