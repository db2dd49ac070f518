import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import TTLCache
from .credit_history import CreditHistoryRecorder
from .documents import InMemoryDocumentStore
from .errors import (
    ConflictError,
    ExchangeServiceError,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from .ledger_client import InMemoryLedgerClient, LedgerClient, LedgerError, ShopifyLedgerClient
from .logging_setup import setup_logging
from .models import (
    Actor,
    AssignCreditRequest,
    AssignCreditResponse,
    CreateExchangeRequest,
    CreateWarehouseRequest,
    CreditHistoryEntry,
    CustomerCheckRequest,
    CustomerCheckResponse,
    CustomerPointsResponse,
    ExchangeRequest,
    StatusUpdateRequest,
    SubmitShippingRequest,
    TransitUpdateRequest,
    UpdateExchangeRequest,
    UpdateWarehouseRequest,
    Warehouse,
)
from .notifications import EmailSender, NotificationDispatcher, NotificationQueue
from .service import ExchangeService
from .settings import Settings, get_settings
from .store import EXCHANGE_REQUESTS, ExchangeRequestStore
from .warehouses import WarehouseDirectory

logger = logging.getLogger(__name__)


@dataclass
class Services:
    exchange: ExchangeService
    dispatcher: NotificationDispatcher
    ledger: LedgerClient
    warehouses: WarehouseDirectory
    credit_history: CreditHistoryRecorder


def build_services(settings: Settings, ledger: Optional[LedgerClient] = None) -> Services:
    documents = InMemoryDocumentStore(composite_indexes={(EXCHANGE_REQUESTS, "owner_id", "created_at")})

    if ledger is None:
        if settings.ledger_configured:
            ledger = ShopifyLedgerClient(
                store_url=settings.SHOPIFY_STORE_URL,
                access_token=settings.SHOPIFY_ACCESS_TOKEN,
                api_version=settings.SHOPIFY_API_VERSION,
                cache=TTLCache(ttl_seconds=settings.LEDGER_CACHE_TTL_SECONDS),
                namespace=settings.LEDGER_POINTS_NAMESPACE,
                key=settings.LEDGER_POINTS_KEY,
                currency=settings.CREDIT_CURRENCY,
                timeout=settings.LEDGER_TIMEOUT_SECONDS,
            )
        else:
            logger.warning("Shopify credentials not configured; using in-memory loyalty ledger")
            ledger = InMemoryLedgerClient(currency=settings.CREDIT_CURRENCY)

    queue = NotificationQueue()
    warehouses = WarehouseDirectory(documents)
    credit_history = CreditHistoryRecorder(documents)
    exchange = ExchangeService(
        store=ExchangeRequestStore(documents),
        warehouses=warehouses,
        credit_history=credit_history,
        ledger=ledger,
        notifications=queue,
        currency=settings.CREDIT_CURRENCY,
        guard_duplicate_credit=settings.CREDIT_DUPLICATE_GUARD,
    )
    dispatcher = NotificationDispatcher(queue, EmailSender(settings), settings)
    return Services(
        exchange=exchange,
        dispatcher=dispatcher,
        ledger=ledger,
        warehouses=warehouses,
        credit_history=credit_history,
    )


def to_http_exception(error: ExchangeServiceError) -> HTTPException:
    if isinstance(error, (ValidationError, ConflictError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, ForbiddenError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ExternalServiceError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(error))


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_admin: bool = Header(default=False),
) -> Actor:
    # Identity is established upstream by the session layer.
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return Actor(id=x_user_id, email=x_user_email, is_admin=x_user_admin)


def get_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


system_router = APIRouter(tags=["System"])
exchange_router = APIRouter(prefix="/exchange", tags=["Exchange"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"])


@system_router.get("/health")
def health_check():
    return {"status": "healthy", "service": "exchange"}


@system_router.post("/ledger/check-customer", response_model=CustomerCheckResponse)
def check_customer(request: CustomerCheckRequest, services: Services = Depends(get_services)) -> CustomerCheckResponse:
    points = services.ledger.get_customer_points(request.email)
    if points.error:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found in ledger")
    return CustomerCheckResponse(exists=True, ledger_customer_id=points.customer_id, message="Customer found in ledger")


@system_router.get("/me/points", response_model=CustomerPointsResponse)
def my_points(actor: Actor = Depends(get_actor), services: Services = Depends(get_services)) -> CustomerPointsResponse:
    if not actor.email:
        return CustomerPointsResponse(amount=0, currency=services.exchange.currency, error="No email on session")
    try:
        points = services.ledger.get_customer_points(actor.email)
    except LedgerError as e:
        logger.error("Loyalty points lookup failed for %s: %s", actor.id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch loyalty points")
    return CustomerPointsResponse(
        amount=points.amount,
        currency=points.currency,
        ledger_customer_id=points.customer_id,
        error=points.error,
    )


@system_router.get("/me/credit-history", response_model=list[CreditHistoryEntry])
def my_credit_history(
    limit: int = 10,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    try:
        return services.exchange.list_my_credit_history(actor, limit=limit)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


# ---------------------------------------------------------------------------
# Owner routes
# ---------------------------------------------------------------------------

@exchange_router.post("", response_model=ExchangeRequest, status_code=status.HTTP_201_CREATED)
def create_exchange(
    request: CreateExchangeRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
) -> ExchangeRequest:
    try:
        return services.exchange.create_request(actor, request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


@exchange_router.get("", response_model=list[ExchangeRequest])
def list_my_exchanges(actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    return services.exchange.list_my_requests(actor)


@exchange_router.get("/{request_id}", response_model=ExchangeRequest)
def get_exchange(request_id: str, actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    try:
        return services.exchange.get_request(actor, request_id)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


@exchange_router.put("/{request_id}", response_model=ExchangeRequest)
def update_exchange(
    request_id: str,
    request: UpdateExchangeRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    try:
        return services.exchange.update_request(actor, request_id, request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


@exchange_router.delete("/{request_id}")
def cancel_exchange(request_id: str, actor: Actor = Depends(get_actor), services: Services = Depends(get_services)):
    try:
        services.exchange.cancel_request(actor, request_id)
    except ExchangeServiceError as e:
        raise to_http_exception(e)
    return {"message": "Exchange request canceled successfully"}


@exchange_router.post("/{request_id}/shipping", response_model=ExchangeRequest)
def submit_shipping(
    request_id: str,
    request: SubmitShippingRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    try:
        return services.exchange.submit_shipping(actor, request_id, request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


# ---------------------------------------------------------------------------
# Admin routes
# ---------------------------------------------------------------------------

@admin_router.get("/exchange-requests", response_model=list[ExchangeRequest])
def list_all_exchanges(
    limit: int = 100,
    actor: Actor = Depends(get_admin),
    services: Services = Depends(get_services),
):
    return services.exchange.list_all_requests(actor, limit=limit)


@admin_router.get("/exchange-requests/{request_id}", response_model=ExchangeRequest)
def admin_get_exchange(request_id: str, actor: Actor = Depends(get_admin), services: Services = Depends(get_services)):
    try:
        return services.exchange.get_request(actor, request_id)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


@admin_router.put("/exchange-requests/{request_id}/status", response_model=ExchangeRequest)
def set_exchange_status(
    request_id: str,
    request: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin),
    services: Services = Depends(get_services),
):
    try:
        updated = services.exchange.set_status(actor, request_id, request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)
    background_tasks.add_task(services.dispatcher.dispatch_pending)
    return updated


@admin_router.put("/exchange-requests/{request_id}/transit", response_model=ExchangeRequest)
def set_exchange_transit(
    request_id: str,
    request: TransitUpdateRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin),
    services: Services = Depends(get_services),
):
    try:
        updated = services.exchange.set_transit(actor, request_id, request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)
    background_tasks.add_task(services.dispatcher.dispatch_pending)
    return updated


@admin_router.put("/exchange-requests/{request_id}/credit", response_model=AssignCreditResponse)
def assign_exchange_credit(
    request_id: str,
    request: AssignCreditRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_admin),
    services: Services = Depends(get_services),
):
    try:
        result = services.exchange.assign_credit(actor, request_id, request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)
    background_tasks.add_task(services.dispatcher.dispatch_pending)
    return result


@admin_router.get("/credit-history", response_model=list[CreditHistoryEntry])
def list_credit_history(
    owner_id: Optional[str] = None,
    limit: int = 50,
    actor: Actor = Depends(get_admin),
    services: Services = Depends(get_services),
):
    return services.credit_history.list_entries(owner_id=owner_id, limit=limit)


@admin_router.get("/warehouses", response_model=list[Warehouse])
def list_warehouses(actor: Actor = Depends(get_admin), services: Services = Depends(get_services)):
    return services.warehouses.list_all()


@admin_router.get("/warehouses/{warehouse_id}", response_model=Warehouse)
def get_warehouse(warehouse_id: str, actor: Actor = Depends(get_admin), services: Services = Depends(get_services)):
    try:
        return services.warehouses.get(warehouse_id)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


@admin_router.post("/warehouses", response_model=Warehouse, status_code=status.HTTP_201_CREATED)
def create_warehouse(
    request: CreateWarehouseRequest,
    actor: Actor = Depends(get_admin),
    services: Services = Depends(get_services),
):
    try:
        return services.warehouses.create(request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


@admin_router.put("/warehouses/{warehouse_id}", response_model=Warehouse)
def update_warehouse(
    warehouse_id: str,
    request: UpdateWarehouseRequest,
    actor: Actor = Depends(get_admin),
    services: Services = Depends(get_services),
):
    try:
        return services.warehouses.update(warehouse_id, request)
    except ExchangeServiceError as e:
        raise to_http_exception(e)


@admin_router.delete("/warehouses/{warehouse_id}")
def delete_warehouse(warehouse_id: str, actor: Actor = Depends(get_admin), services: Services = Depends(get_services)):
    try:
        services.warehouses.delete(warehouse_id)
    except ExchangeServiceError as e:
        raise to_http_exception(e)
    return {"message": "Warehouse deleted successfully"}


def _describe_validation_error(error: dict) -> str:
    field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    return f"{field}: {error.get('msg')}" if field else str(error.get("msg"))


async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed payloads are client errors like any other validation failure.
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "; ".join(_describe_validation_error(e) for e in errors) or "Invalid request",
            "errors": jsonable_encoder(errors),
        },
    )


async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal server error"})


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Exchange API",
        description="Exchange-for-store-credit backend: request lifecycle, warehouses and loyalty credit",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, invalid_request)
    app.add_exception_handler(Exception, unhandled_error)
    app.state.services = services or build_services(settings)

    app.include_router(system_router)
    app.include_router(exchange_router)
    app.include_router(admin_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
