import logging
from typing import Union
from fastapi import HTTPException, status

from marketplace.domain.exceptions import (
    DomainException, TransientError, InvalidRequestError, UnauthenticatedError,
    ForbiddenError, OrderNotFoundError, InvalidStateTransitionError,
    ConflictingPaymentOutcomeError, OrderAlreadyPaidError
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (OrderNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (ConflictingPaymentOutcomeError, status.HTTP_409_CONFLICT),
    (OrderAlreadyPaidError, status.HTTP_409_CONFLICT),
]

RETRY_MESSAGE = "Сервис временно недоступен, повторите запрос позже"


def to_http_exception(error: Union[DomainException, TransientError]) -> HTTPException:
    """Бизнес-ошибки отдаются с причиной, временные без деталей"""
    if isinstance(error, TransientError):
        logger.warning(f"Временная ошибка: {error!r}")
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=RETRY_MESSAGE)

    if isinstance(error, ConflictingPaymentOutcomeError):
        logger.error(f"Требуется ручная проверка: {error}")

    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return HTTPException(status_code=status_code, detail=str(error))

    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
