"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the backlog planning API.
Controllers are intentionally thin: they resolve the current user,
delegate to services, and return JSON responses.

Endpoints implemented:
- POST /auth/register, POST /auth/login, GET /auth/me
- GET /api/dashboard
- GET/POST /api/backlogs, GET/PUT/DELETE /api/backlogs/{id}
- GET /api/backlogs/{id}/export
- GET/POST /api/epics, GET/PUT/DELETE /api/epics/{id}
- GET/POST /api/pbis, GET/PUT/DELETE /api/pbis/{id}
"""

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, HTMLResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import Optional
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user
from .schemas import RegisterIn, BacklogIn, EpicIn, PbiIn
from .utils.export import XLSX_MEDIA_TYPE
from .utils.sorting import ASC, NO_EPIC, FilterSpec, SortSpec
from .config import settings

app = FastAPI(title="Product Backlog API")
logger = logging.getLogger("backlog_api.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

# Wide-open CORS keeps a local browser frontend working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies and query strings as plain 400s."""
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path"))
        problems.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return JSONResponse(status_code=400, content={"detail": "; ".join(problems) or "invalid request"})


@app.exception_handler(services.NotFoundError)
async def not_found_handler(request: Request, exc: services.NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(services.ForbiddenError)
async def forbidden_handler(request: Request, exc: services.ForbiddenError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    # traceback is logged by request_context_middleware; never leak details
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _parse_epic_filter(epic_id: Optional[str]):
    """Map the `epicId` query value to an epic id, `NO_EPIC` or `None`."""
    if epic_id is None or epic_id == "":
        return None
    if epic_id == NO_EPIC:
        return NO_EPIC
    try:
        return int(epic_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="epicId must be an integer or 'null'")


def _sort_spec(field: Optional[str], direction: Optional[str], default: Optional[SortSpec] = None) -> Optional[SortSpec]:
    if not field:
        return default
    try:
        return SortSpec(field, direction or ASC)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user.

    Re-registering with the same credentials returns the existing user
    (useful for automation/tests); a taken username with a different
    password is rejected with 409.
    """
    try:
        user = services.AuthService(db).register(payload.username, payload.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except services.ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {'id': user.id, 'username': user.username}


@app.post('/auth/login')
def login(payload: RegisterIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token.

    The returned token contains `user_id` and `username` and is signed
    using the configured JWT secret.
    """
    token = services.AuthService(db).authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token, 'token_type': 'bearer'}


@app.get('/auth/me')
def me(user: models.User = Depends(get_current_user)):
    """Return the user resolved from the bearer token."""
    return {'id': user.id, 'username': user.username}


@app.get('/api/dashboard')
def dashboard(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Counts of backlogs, epics and PBIs owned by the user."""
    return services.DashboardService(db).counts(user.id)


# Backlogs

@app.get('/api/backlogs')
def list_backlogs(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """List the user's backlogs, least recently updated first."""
    return services.BacklogService(db).list_owned(user.id)


@app.post('/api/backlogs', status_code=201)
def create_backlog(payload: BacklogIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        return services.BacklogService(db).create(user.id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get('/api/backlogs/{backlog_id}')
def get_backlog(backlog_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.BacklogService(db).get(user.id, backlog_id)


@app.put('/api/backlogs/{backlog_id}')
def update_backlog(backlog_id: int, payload: BacklogIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Replace a backlog's title and description."""
    try:
        return services.BacklogService(db).update(user.id, backlog_id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete('/api/backlogs/{backlog_id}')
def delete_backlog(backlog_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Delete a backlog together with its epics and PBIs."""
    services.BacklogService(db).delete(user.id, backlog_id)
    return {'message': 'Backlog deleted successfully'}


@app.get('/api/backlogs/{backlog_id}/export')
def export_backlog(
    backlog_id: int,
    sort_field: Optional[str] = Query(None, alias='sortField'),
    sort_direction: Optional[str] = Query(None, alias='sortDirection'),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Download the backlog's PBIs as an .xlsx workbook.

    Rows follow the requested sort; without one, newest PBIs come first.
    """
    sort = _sort_spec(sort_field, sort_direction, default=SortSpec())
    filename, content = services.ExportService(db).export_backlog(user.id, backlog_id, sort)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


# Epics

@app.get('/api/epics')
def list_epics(
    backlog_id: Optional[int] = Query(None, alias='backlogId'),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List epics across the user's backlogs, optionally for one backlog."""
    return services.EpicService(db).list_owned(user.id, backlog_id=backlog_id)


@app.post('/api/epics', status_code=201)
def create_epic(payload: EpicIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        return services.EpicService(db).create(user.id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get('/api/epics/{epic_id}')
def get_epic(epic_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.EpicService(db).get(user.id, epic_id)


@app.put('/api/epics/{epic_id}')
def update_epic(epic_id: int, payload: EpicIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        return services.EpicService(db).update(user.id, epic_id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete('/api/epics/{epic_id}')
def delete_epic(epic_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Delete an epic; its PBIs are kept and lose their epic."""
    services.EpicService(db).delete(user.id, epic_id)
    return {'message': 'Epic deleted successfully'}


# PBIs

@app.get('/api/pbis')
def list_pbis(
    backlog_id: Optional[int] = Query(None, alias='backlogId'),
    epic_id: Optional[str] = Query(None, alias='epicId'),
    sort_field: Optional[str] = Query(None, alias='sortField'),
    sort_direction: Optional[str] = Query(None, alias='sortDirection'),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List PBIs with their backlog and epic titles.

    `epicId=null` selects PBIs without an epic. Without `sortField` the
    list is ordered by last update, oldest first.
    """
    filters = FilterSpec(backlog_id=backlog_id, epic_id=_parse_epic_filter(epic_id))
    sort = _sort_spec(sort_field, sort_direction)
    return services.PbiService(db).list_owned(user.id, filters=filters, sort=sort)


@app.post('/api/pbis', status_code=201)
def create_pbi(payload: PbiIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        return services.PbiService(db).create(user.id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get('/api/pbis/{pbi_id}')
def get_pbi(pbi_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.PbiService(db).get(user.id, pbi_id)


@app.put('/api/pbis/{pbi_id}')
def update_pbi(pbi_id: int, payload: PbiIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Replace every editable PBI field; the backlog cannot change."""
    try:
        return services.PbiService(db).update(user.id, pbi_id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete('/api/pbis/{pbi_id}')
def delete_pbi(pbi_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.PbiService(db).delete(user.id, pbi_id)
    return {'message': 'PBI deleted successfully'}


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>Product Backlog API</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>Product Backlog API</h1>
        <p>Browse the endpoints in the <a href="/docs">Swagger UI</a>.</p>
        <p>Use <code>/auth/register</code> + <code>/auth/login</code> to get a token, then call <code>/api/backlogs</code>.</p>
      </div>
    </body>
    </html>
    """


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
