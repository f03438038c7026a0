"""
FastAPI application exposing assignment operations and service control.

Every error response is a ClaimRoutingError payload
(``{success: false, error, message, details}``) and is written to the
audit trail together with the request body.
"""

import threading
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from claim_routing.container import ServiceContainer
from claim_routing.core.audit import error_entry
from claim_routing.core.exceptions import ClaimRoutingError, ValidationError
from claim_routing.core.models import Assignment
from claim_routing.observability.logger import get_logger
from claim_routing.observability.metrics import errors_total, generate_metrics, get_content_type, increment_counter

logger = get_logger(__name__)

SERVICE_NAME = "http_api"


# =======================
# REQUEST BODIES
# =======================

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ManualAssignmentRequest(_CamelModel):
    user_id: int | None = Field(default=None, alias="userId")
    company_id: int = Field(alias="companyId")
    claim_id: str = Field(alias="claimId", min_length=1, max_length=100)
    document_number: str = Field(alias="documentNumber", min_length=1, max_length=100)
    process_id: int | None = Field(default=None, alias="processId")
    source: str | None = Field(default=None, max_length=30)
    target: str | None = Field(default=None, max_length=30)
    objection_code: str | None = Field(default=None, alias="objectionCode", max_length=100)
    concept_application_code: str | None = Field(default=None, alias="conceptApplicationCode", max_length=100)
    external_reference: str | None = Field(default=None, alias="externalReference", max_length=255)
    invoice_amount: float | None = Field(default=None, alias="invoiceAmount", ge=0)
    value: float | None = Field(default=None, ge=0)
    type: str | None = Field(default=None, max_length=150)


class ReassignRequest(_CamelModel):
    user_id: int = Field(alias="userId")
    version: int | None = None


class AssignmentRef(BaseModel):
    assignment_id: int = Field(validation_alias=AliasChoices("assignmentId", "assigmentId", "assignment_id"))


class BulkReassignRequest(_CamelModel):
    user_tcp: str | None = Field(default=None, alias="userTCP")
    user_id: int = Field(alias="userId")
    assignments: list[AssignmentRef] = Field(min_length=1)


class CompleteByKeyRequest(_CamelModel):
    claim_id: str = Field(alias="claimId", min_length=1)
    document_number: str = Field(alias="documentNumber", min_length=1)


# =======================
# APPLICATION
# =======================

def create_app(container: ServiceContainer) -> FastAPI:
    """
    Build the API around a wired container.

    When ``AUTO_START_QUEUE`` is set the consumer is started on a
    background thread at startup, so a broker outage never blocks the API.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container.settings.auto_start_queue:
            threading.Thread(target=container.supervisor.start, name="claim-consumer-bootstrap", daemon=True).start()
        yield
        container.close()

    async def capture_payload(request: Request) -> None:
        body = await request.body()
        request.state.payload = body.decode("utf-8", errors="replace") if body else None

    app = FastAPI(
        title="Claim Routing Service",
        version="0.1.0",
        lifespan=lifespan,
        dependencies=[Depends(capture_payload)],
    )
    app.state.container = container

    def current_actor(authorization: str | None = Header(default=None)) -> str:
        provider = container.token_provider
        if provider is None:
            return "api"
        if not authorization or not authorization.lower().startswith("bearer "):
            raise HTTPException(status_code=401, detail="Bearer token required")
        try:
            return provider.verify(authorization[7:].strip())
        except ValidationError as e:
            raise HTTPException(status_code=401, detail=e.message) from e

    # -----------------------
    # Error handling
    # -----------------------

    def _audit_failure(request: Request, error: Exception, payload: Any) -> None:
        entry = error_entry(
            error,
            service=SERVICE_NAME,
            action=f"{request.method} {request.url.path}",
            payload=payload,
        )
        try:
            container.audit.record(entry)
        except ClaimRoutingError as e:
            logger.error(f"Could not persist API audit entry for {request.url.path}: {e.message}")

    @app.exception_handler(ClaimRoutingError)
    async def handle_claim_routing_error(request: Request, exc: ClaimRoutingError):
        increment_counter(errors_total, error_type=exc.error_type, component=SERVICE_NAME)
        logger.warning(f"{request.method} {request.url.path} failed: {exc.error_type}: {exc.message}")
        _audit_failure(request, exc, getattr(request.state, "payload", None))
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        error = ValidationError("Invalid request", details={"errors": errors})
        increment_counter(errors_total, error_type=error.error_type, component=SERVICE_NAME)
        _audit_failure(request, error, exc.body)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        increment_counter(errors_total, error_type=type(exc).__name__, component=SERVICE_NAME)
        logger.error(
            f"{request.method} {request.url.path} failed unexpectedly: {type(exc).__name__}: {exc}",
            exc_info=exc,
        )
        _audit_failure(request, exc, getattr(request.state, "payload", None))
        error = ClaimRoutingError("Internal server error", details={"error_type": type(exc).__name__})
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    def ok(data: Any, status_code: int = 200) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"success": True, "data": data})

    def dump(assignment: Assignment) -> dict[str, Any]:
        return assignment.model_dump(mode="json")

    # -----------------------
    # Assignments
    # -----------------------

    @app.post("/assignments", status_code=201)
    def create_assignment(body: ManualAssignmentRequest, actor: str = Depends(current_actor)):
        draft = Assignment(**body.model_dump())
        return ok(dump(container.lifecycle.create_manual(draft, actor=actor)), status_code=201)

    @app.post("/assignments/complete")
    def complete_by_natural_key(body: CompleteByKeyRequest, actor: str = Depends(current_actor)):
        assignment = container.lifecycle.complete_by_natural_key(body.claim_id, body.document_number, actor=actor)
        return ok(dump(assignment))

    @app.post("/assignments/company/{company_id}/reassignment")
    def bulk_reassign(company_id: int, body: BulkReassignRequest, actor: str = Depends(current_actor)):
        if actor == "api" and body.user_tcp:
            actor = body.user_tcp
        result = container.lifecycle.bulk_reassign(
            company_id,
            body.user_id,
            [ref.assignment_id for ref in body.assignments],
            actor=actor,
        )
        return ok(result.to_dict())

    @app.get("/assignments/{assignment_id}")
    def get_assignment(assignment_id: int, actor: str = Depends(current_actor)):
        return ok(dump(container.lifecycle.get(assignment_id)))

    @app.post("/assignments/{assignment_id}/activate")
    def activate(
        assignment_id: int,
        version: int | None = Query(default=None),
        actor: str = Depends(current_actor),
    ):
        return ok(dump(container.lifecycle.activate(assignment_id, actor=actor, expected_version=version)))

    @app.post("/assignments/{assignment_id}/complete")
    def complete(
        assignment_id: int,
        version: int | None = Query(default=None),
        actor: str = Depends(current_actor),
    ):
        return ok(dump(container.lifecycle.complete(assignment_id, actor=actor, expected_version=version)))

    @app.post("/assignments/{assignment_id}/cancel")
    def cancel(
        assignment_id: int,
        version: int | None = Query(default=None),
        actor: str = Depends(current_actor),
    ):
        return ok(dump(container.lifecycle.cancel(assignment_id, actor=actor, expected_version=version)))

    @app.post("/assignments/{assignment_id}/unassign")
    def unassign(
        assignment_id: int,
        version: int | None = Query(default=None),
        actor: str = Depends(current_actor),
    ):
        return ok(dump(container.lifecycle.unassign(assignment_id, actor=actor, expected_version=version)))

    @app.post("/assignments/{assignment_id}/reassign")
    def reassign(assignment_id: int, body: ReassignRequest, actor: str = Depends(current_actor)):
        assignment = container.lifecycle.reassign(
            assignment_id, body.user_id, actor=actor, expected_version=body.version,
        )
        return ok(dump(assignment))

    # -----------------------
    # Automatic assignment
    # -----------------------

    @app.post("/auto-assignments/process-manually")
    def process_manually(payload: dict[str, Any], actor: str = Depends(current_actor)):
        outcome = container.pipeline.process(payload, entrypoint="api", actor=actor)
        return JSONResponse(status_code=200, content=outcome.to_dict())

    @app.get("/auto-assignments/service/status")
    def service_status():
        return ok(container.supervisor.status())

    @app.post("/auto-assignments/service/start")
    def service_start(actor: str = Depends(current_actor)):
        logger.info(f"Queue consumer start requested by {actor}")
        started = container.supervisor.start()
        return JSONResponse(
            status_code=200 if started else 503,
            content={"success": started, "data": container.supervisor.status()},
        )

    @app.post("/auto-assignments/service/stop")
    def service_stop(actor: str = Depends(current_actor)):
        logger.info(f"Queue consumer stop requested by {actor}")
        container.supervisor.stop()
        return ok(container.supervisor.status())

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_metrics(), media_type=get_content_type())

    return app
