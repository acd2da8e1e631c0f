"""
api/routes/v1/connections.py -- Cloud connection routes for the CloudPortal REST API.

Routes (mounted under /api/v1.0):
  GET    /cloudconnections                  -- list connection ids
  GET    /cloudconnections/{connection_id}  -- connection document, or null
  PUT    /cloudconnections/{connection_id}  -- upsert; 201 if new, 200 if replaced
  DELETE /cloudconnections/{connection_id}  -- 204 if removed, 404 if missing

All routes require an authenticated session. The router-level dependency
rejects anonymous callers with 401 before any handler runs; API clients are
never redirected to the login page.

Connection documents are opaque JSON. The store does not inspect them, but
PUT only accepts an application/json (or +json) body: anything else is 415,
and a body that does not parse is 422.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.models import ErrorDetail
from auth.dependencies import require_api_user
from connections.store import ConnectionStore

router = APIRouter(dependencies=[Depends(require_api_user)])


def _is_json(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


@router.get("/cloudconnections", response_model=list[str])
def list_connections(request: Request) -> list[str]:
    """Return every connection id."""
    store: ConnectionStore = request.app.state.connections
    return store.keys()


@router.get("/cloudconnections/{connection_id}")
def get_connection(request: Request, connection_id: str) -> JSONResponse:
    """Return the stored document. An unknown id yields null, not an error."""
    store: ConnectionStore = request.app.state.connections
    return JSONResponse(content=store.get(connection_id))


@router.put(
    "/cloudconnections/{connection_id}",
    openapi_extra={"requestBody": {"required": True, "content": {"application/json": {"schema": {}}}}},
)
async def put_connection(request: Request, connection_id: str) -> JSONResponse:
    """Create or replace a connection document and echo it back.

    The body is read here rather than declared as a parameter: FastAPI
    decodes declared bodies before router dependencies run, and an anonymous
    caller must get 401 whatever it sends.

    The status code reflects what the store found under the lock: 201 when
    the id was new, 200 when an existing document was replaced.
    """
    if not _is_json(request.headers.get("content-type", "")):
        raise HTTPException(
            status_code=415,
            detail=ErrorDetail(
                code="unsupported_media_type",
                message="Connection documents must be sent as application/json.",
            ).model_dump(),
        )
    try:
        body = await request.json()
    except ValueError as e:
        raise HTTPException(
            status_code=422,
            detail=ErrorDetail(
                code="validation_error",
                message="Request body is not valid JSON.",
                detail=str(e),
            ).model_dump(),
        ) from e

    store: ConnectionStore = request.app.state.connections
    created = store.upsert(connection_id, body)
    return JSONResponse(status_code=201 if created else 200, content=body)


@router.delete("/cloudconnections/{connection_id}", status_code=204)
def delete_connection(request: Request, connection_id: str) -> Response:
    """Remove a connection. Deleting an unknown id is a 404, not a silent success."""
    store: ConnectionStore = request.app.state.connections
    if not store.delete(connection_id):
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                code="not_found",
                message=f"Connection {connection_id!r} does not exist.",
            ).model_dump(),
        )
    return Response(status_code=204)
