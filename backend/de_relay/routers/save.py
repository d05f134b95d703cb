"""
Save-to-Data-Extension router.

Receives field batches from the translation content block (served from a
different origin, inside the authoring tool's iframe) and relays them to
the configured Data Extension.

Endpoints:
  POST    /  : save a batch of fields (one DE row per field)
  OPTIONS /  : CORS preflight, always 200
  other      : 405 {"success": false, "error": "Method not allowed"}

Failures are raised as RelayError subclasses and rendered by the exception
handlers registered in de_relay.main.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from de_relay.clients import get_relay
from de_relay.models.save import ErrorResponse, SaveRequest, SaveResponse
from de_relay.services.upsert_relay import UpsertRelay

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@router.post(
    "",
    response_model=SaveResponse,
    responses={
        200: {
            "description": "All rows upserted in one batch",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "rowsInserted": 2,
                        "message": "Successfully saved 2 row(s) to Data Extension",
                        "result": {},
                    }
                }
            },
        },
        400: {"model": ErrorResponse, "description": "Invalid body or validation rule violated"},
        500: {"model": ErrorResponse, "description": "Missing configuration, token exchange or upsert failed"},
    },
)
async def save_to_data_extension(
    body: SaveRequest,
    request: Request,
    relay: UpsertRelay = Depends(get_relay),
):
    """
    Save the widget's fields to the Data Extension.

    Each field becomes one row keyed by (emailName, fieldName); saving the same
    email again overwrites the previous values instead of adding rows. All rows
    of one save share one entryTimestamp and are sent in a single request.
    """
    # Error handlers read the relay settings from here
    request.state.settings = relay.settings
    result = await relay.save(body)

    return SaveResponse(
        rowsInserted=result.rows_inserted,
        message=f"Successfully saved {result.rows_inserted} row(s) to Data Extension",
        result=result.result,
    )


@router.options("", include_in_schema=False)
async def preflight() -> Response:
    """Answer bare OPTIONS calls the same way a CORS preflight is answered."""
    return Response(status_code=200, headers=CORS_HEADERS)


@router.api_route(
    "",
    methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "TRACE", "CONNECT"],
    include_in_schema=False,
)
async def method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"success": False, "error": "Method not allowed"},
        headers={**CORS_HEADERS, "Allow": "POST, OPTIONS"},
    )
