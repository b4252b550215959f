"""
Unit tests for the HTTP mapping of dispatch-core errors.
"""

from decimal import Decimal

import pytest

from src.api.errors import http_error, status_for
from src.core.exceptions import (
    AlreadyResponded,
    ConcurrentModification,
    Forbidden,
    InsufficientBalance,
    InvalidLocation,
    InvalidTransition,
    NotAssignedToYou,
    PaymentNotFound,
    ResponseWindowExpired,
    TechnicianBlocked,
    TechnicianNotFound,
    WorkOrderNotFound,
)


class TestStatusFor:

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (WorkOrderNotFound(1), 404),
            (PaymentNotFound(1), 404),
            (TechnicianNotFound(4), 404),
            (InvalidLocation("bad"), 400),
            (InsufficientBalance(Decimal("10"), Decimal("5")), 400),
            (NotAssignedToYou(1, 4), 403),
            (Forbidden("no"), 403),
            (InvalidTransition("no"), 409),
            (ConcurrentModification(1, "ASSIGNED"), 409),
            (AlreadyResponded(1, "ACCEPTED"), 409),
            (TechnicianBlocked(6), 409),
            (ResponseWindowExpired(1), 410),
        ],
    )
    def test_mapping(self, exc, expected):
        assert status_for(exc) == expected


class TestHttpError:

    def test_detail_carries_code_and_message(self):
        error = http_error(ResponseWindowExpired(7))
        assert error.status_code == 410
        assert error.detail["code"] == "RESPONSE_WINDOW_EXPIRED"
        assert "7" in error.detail["message"]

    def test_insufficient_balance_message(self):
        error = http_error(InsufficientBalance(Decimal("100"), Decimal("42.5")))
        assert error.detail["message"] == (
            "insufficient wallet balance: requested 100.00, available 42.50"
        )

    def test_insufficient_balance_names_reservation(self):
        exc = InsufficientBalance(
            Decimal("60"), Decimal("0"), balance=Decimal("100"), reserved=Decimal("100"),
        )
        assert exc.message == (
            "insufficient wallet balance: requested 60.00, available 0.00 "
            "(balance 100.00, 100.00 reserved for scheduled payouts)"
        )
