import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import settings
from marketplace.database import get_session_factory
from marketplace.domain.models import Identity, Role, OrderStatus, PaymentStatus, ByReference
from marketplace.domain.exceptions import DomainException, TransientError
from marketplace.presentation.errors import to_http_exception
from marketplace.presentation.schemas import (
    CreateOrderRequest, OrderResponse, OrderDetailResponse, PagedResponse,
    UpdateOrderStatusRequest, DashboardResponse, PaymentRequest, PaymentResponse,
    PaymentCallbackRequest, AdminPaymentUpdateRequest, ProviderConfigResponse, ErrorResponse
)
from marketplace.application.create_order import CreateOrderUseCase, CreateOrderDTO, OrderLineDTO
from marketplace.application.get_order import GetOrderUseCase
from marketplace.application.list_orders import GetUserOrdersUseCase, GetAllOrdersUseCase
from marketplace.application.cancel_order import CancelOrderUseCase
from marketplace.application.update_order_status import UpdateOrderStatusUseCase, UpdateOrderStatusDTO
from marketplace.application.dashboard import GetDashboardMetricsUseCase
from marketplace.application.process_payment import (
    GetProviderSecretUseCase, ProcessPaymentUseCase, ProcessPaymentDTO
)
from marketplace.application.update_payment import (
    UpdatePaymentUseCase, AdminUpdatePaymentUseCase, CancelPendingPaymentUseCase
)
from marketplace.infrastructure.unit_of_work import UnitOfWork
from marketplace.infrastructure.http_clients import HTTPCatalogClient, HTTPPaymentGatewayClient

logger = logging.getLogger(__name__)

orders_router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
payment_router = APIRouter(prefix="/payment", tags=["payment"])

CALLBACK_STATUSES = {
    "succeeded": PaymentStatus.SUCCESS,
    "success": PaymentStatus.SUCCESS,
    "failed": PaymentStatus.FAILED,
    "fail": PaymentStatus.FAILED,
}

ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# Пользователь определяется шлюзом авторизации и передается заголовками
def get_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None)
) -> Optional[Identity]:
    if not x_user_id:
        return None
    role = Role.ADMIN if (x_user_role or "").upper() == Role.ADMIN.value else Role.USER
    return Identity(user_id=x_user_id, role=role, email=x_user_email)


def verify_callback_token(x_api_key: Optional[str] = Header(None)) -> None:
    if settings.API_TOKEN and x_api_key != settings.API_TOKEN:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Неверный API ключ")


# Фабрики для создания use cases
def get_unit_of_work(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory)
) -> UnitOfWork:
    return UnitOfWork(session_factory)


def get_catalog_client():
    return HTTPCatalogClient(settings.CATALOG_BASE_URL, settings.API_TOKEN, settings.CATALOG_TIMEOUT_SECONDS)


def get_payment_gateway():
    return HTTPPaymentGatewayClient(settings.PAYMENT_BASE_URL, settings.API_TOKEN, settings.PAYMENT_TIMEOUT_SECONDS)


def get_create_order_use_case(uow=Depends(get_unit_of_work), catalog=Depends(get_catalog_client)):
    return CreateOrderUseCase(
        uow, catalog, settings.TAX_RATE, settings.SHIPPING_FEE, settings.FREE_SHIPPING_THRESHOLD
    )


def get_update_payment_use_case(uow=Depends(get_unit_of_work)):
    return UpdatePaymentUseCase(uow)


@orders_router.post("", response_model=OrderResponse, responses=ERRORS, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    identity: Optional[Identity] = Depends(get_identity),
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Создать новый заказ"""
    try:
        dto = CreateOrderDTO(
            items=[OrderLineDTO(product_id=line.product_id, quantity=line.quantity) for line in request.items],
            shipping_address=request.shipping_address,
            payment_method=request.payment_method,
            phone=request.phone,
            notes=request.notes,
            idempotency_key=request.idempotency_key
        )
        order = await use_case(dto, identity)
        return OrderResponse.from_domain(order)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@orders_router.get("/my-orders", response_model=PagedResponse[OrderResponse], responses=ERRORS)
async def get_user_orders(
    page: int = 0,
    size: int = 10,
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work)
):
    """Заказы текущего пользователя, новые первыми"""
    try:
        result = await GetUserOrdersUseCase(uow, settings.MAX_PAGE_SIZE)(identity, page, size)
        return PagedResponse[OrderResponse].from_page(result, OrderResponse.from_domain)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@orders_router.get("/{order_id}", response_model=OrderDetailResponse, responses=ERRORS)
async def get_order(
    order_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work)
):
    """Получить заказ по ID"""
    try:
        order = await GetOrderUseCase(uow)(order_id, identity)
        return OrderDetailResponse.from_domain(order)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@orders_router.post("/{order_id}/cancel", response_model=OrderResponse, responses=ERRORS)
async def cancel_order(
    order_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work)
):
    """Отменить заказ до отправки"""
    try:
        order = await CancelOrderUseCase(uow)(order_id, identity)
        return OrderResponse.from_domain(order)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@admin_router.get("/orders", response_model=PagedResponse[OrderResponse], responses=ERRORS)
async def get_all_orders(
    page: int = 0,
    size: int = 10,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work)
):
    """Все заказы с фильтрами по статусу и дате создания"""
    try:
        result = await GetAllOrdersUseCase(uow, settings.MAX_PAGE_SIZE)(
            identity, page, size, order_status, start_date, end_date
        )
        return PagedResponse[OrderResponse].from_page(result, OrderResponse.from_domain)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@admin_router.put("/orders/{order_id}/status", response_model=OrderResponse, responses=ERRORS)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work)
):
    """Сменить статус заказа (админ)"""
    try:
        dto = UpdateOrderStatusDTO(status=request.status, notes=request.notes)
        order = await UpdateOrderStatusUseCase(uow)(order_id, dto, identity)
        return OrderResponse.from_domain(order)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@admin_router.get("/dashboard", response_model=DashboardResponse, responses=ERRORS)
async def get_dashboard(
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work)
):
    """Сводные метрики по заказам"""
    try:
        metrics = await GetDashboardMetricsUseCase(uow)(identity)
        return DashboardResponse.from_domain(metrics)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@admin_router.put("/payments/{order_id}", response_model=OrderResponse, responses=ERRORS)
async def update_payment_by_order(
    order_id: str,
    request: AdminPaymentUpdateRequest,
    identity: Optional[Identity] = Depends(get_identity),
    update_payment: UpdatePaymentUseCase = Depends(get_update_payment_use_case)
):
    """Ручная сверка оплаты по ID заказа"""
    try:
        order = await AdminUpdatePaymentUseCase(update_payment)(order_id, request.status, identity)
        return OrderResponse.from_domain(order)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@payment_router.get("/config", response_model=ProviderConfigResponse)
async def get_payment_config():
    """Ключ для запуска оплаты на стороне провайдера"""
    return ProviderConfigResponse(client_key=GetProviderSecretUseCase(settings.PAYMENT_CLIENT_KEY)())


@payment_router.post("/process", response_model=PaymentResponse, responses=ERRORS)
async def process_payment(
    request: PaymentRequest,
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work),
    gateway=Depends(get_payment_gateway)
):
    """Создать платеж у провайдера"""
    try:
        use_case = ProcessPaymentUseCase(uow, gateway, settings.SERVICE_URL)
        result = await use_case(ProcessPaymentDTO(order_id=request.order_id), identity)
        return PaymentResponse.from_result(result)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@payment_router.post("/callback", response_model=OrderResponse, responses=ERRORS,
                     dependencies=[Depends(verify_callback_token)])
async def payment_callback(
    callback: PaymentCallbackRequest,
    use_case: UpdatePaymentUseCase = Depends(get_update_payment_use_case)
):
    """Обработка callback от платежного провайдера"""
    logger.info(f"Получен callback: {callback.payment_id} -> {callback.status}")
    new_status = CALLBACK_STATUSES.get(callback.status.lower())
    if new_status is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Неизвестный статус платежа: {callback.status}"
        )
    if new_status == PaymentStatus.FAILED and callback.error_message:
        logger.info(f"Платеж {callback.payment_id} не прошел: {callback.error_message}")

    try:
        order = await use_case(ByReference(transaction_ref=callback.payment_id), new_status)
        return OrderResponse.from_domain(order)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)


@payment_router.post("/cancel/{order_id}", response_model=OrderResponse, responses=ERRORS)
async def cancel_payment(
    order_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    uow=Depends(get_unit_of_work),
    update_payment: UpdatePaymentUseCase = Depends(get_update_payment_use_case)
):
    """Пользователь прервал оплату"""
    try:
        order = await CancelPendingPaymentUseCase(uow, update_payment)(order_id, identity)
        return OrderResponse.from_domain(order)
    except (DomainException, TransientError) as e:
        raise to_http_exception(e)
