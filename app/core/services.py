"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with logging, transactions and an injectable clock

Service Layer Philosophy:
    Services own every settlement mutation. Views translate HTTP into
    service calls, models guard their own state transitions, and services
    sequence locks, transactions and gateway calls.

Pattern Comparison:
    - ServiceResult: Use for expected rejections (wrong state, wrong actor)
    - Exceptions: Use for transient failures the caller must retry
      (gateway timeouts, lock contention)

Usage:
    from core.services import BaseService, ServiceResult

    class OrderService(BaseService):
        @classmethod
        def confirm(cls, order_id, actor) -> ServiceResult[Order]:
            with cls.atomic():
                order = Order.objects.select_for_update().get(id=order_id)
                if order.status != OrderStatus.PENDING:
                    return ServiceResult.failure(
                        "Order is not pending",
                        error_code="INVALID_TRANSITION",
                    )
                order.confirm()
                order.save()

            cls.get_logger().info("Order confirmed", extra={"order_id": str(order.id)})
            return ServiceResult.success(order)

    # In view
    result = OrderService.confirm(order_id, request.user)
    if result.success:
        return Response(OrderSerializer(result.data).data)
    return failure_response(result)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

from core.protocols import Clock, SystemClock

if TYPE_CHECKING:
    from collections.abc import Generator
    from datetime import datetime
    from typing import Any

    from core.exceptions import BaseApplicationError

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.
    Use this for expected failures (state conflicts, business rule violations).

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        # Success case
        return ServiceResult.success(order)

        # Failure case
        return ServiceResult.failure("Order already disputed", "ALREADY_DISPUTED")

        # Check result
        result = DisputeService.open_dispute(...)
        if not result.success:
            logger.info("Dispute rejected", extra={"error_code": result.error_code})
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)

        Returns:
            ServiceResult with success=False and error details

        Example:
            return ServiceResult.failure(
                "Only the buyer can confirm receipt",
                error_code="UNAUTHORIZED",
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own message and error code; any other
        exception falls back to its class name.

        Example:
            try:
                require(actor, order, Action.RESOLVE_DISPUTE)
            except UnauthorizedActionError as e:
                return ServiceResult.from_exception(e)
        """
        code = error_code or getattr(exc, "error_code", None) or exc.__class__.__name__.upper()
        message = getattr(exc, "message", None) or str(exc)
        return cls(success=False, error=message, error_code=code)

    def to_response(self) -> dict[str, Any]:
        """
        Convert to API response format.

        Returns:
            Dict with success status and data or error details
        """
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        """Allow using result in boolean context."""
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Current time through a swappable Clock

    Usage:
        class EscrowService(BaseService):
            @classmethod
            def is_due(cls, escrow) -> bool:
                return escrow.release_date <= cls.now()

        # In tests
        BaseService.set_clock(FixedClock(timezone.now()))

    Design Notes:
        - Use @classmethod (no instance state)
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected or retryable failures
    """

    _clock: Clock = SystemClock()

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # ==========================================================================
    # Clock
    # ==========================================================================

    @classmethod
    def get_clock(cls) -> Clock:
        return BaseService._clock

    @classmethod
    def set_clock(cls, clock: Clock | None) -> None:
        """
        Replace the clock for every service.

        Passing None restores the system clock.
        """
        BaseService._clock = clock or SystemClock()

    @classmethod
    def now(cls) -> datetime:
        """Current time according to the configured clock."""
        return BaseService._clock.now()

    # ==========================================================================
    # Transactions & Errors
    # ==========================================================================

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Example:
            with cls.atomic():
                order = Order.objects.select_for_update().get(id=order_id)
                order.cancel()
                order.save()
                OrderStatusHistory.objects.create(...)
                # If the history insert fails, the cancel is rolled back
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: BaseApplicationError,
        context: str = "",
        log_level: int = logging.WARNING,
    ) -> ServiceResult:
        """
        Convert an application error to ServiceResult with logging.

        Args:
            exc: The caught exception
            context: Additional context for logging
            log_level: Logging level (default WARNING)

        Example:
            try:
                order.confirm()
            except InvalidTransitionError as e:
                return cls.handle_exception(e, "confirm order")
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(
            log_level,
            message,
            extra={"error_code": getattr(exc, "error_code", None)},
        )
        return ServiceResult.from_exception(exc)

    @classmethod
    def validate_required(cls, **kwargs) -> ServiceResult | None:
        """
        Validate that required fields are provided.

        Returns a failure result if any required field is None or blank.
        Returns None if all fields are valid.

        Example:
            validation = cls.validate_required(description=description)
            if validation:
                return validation
        """
        errors = {}
        for field_name, value in kwargs.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                errors[field_name] = ["This field is required."]

        if errors:
            return ServiceResult.failure(
                "Required fields missing",
                error_code="VALIDATION_ERROR",
                errors=errors,
            )
        return None
