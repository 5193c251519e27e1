"""
Unit tests for the exception taxonomy and BaseService error logging.
"""

import logging

import pytest

from chipledger.core.exceptions import (
    CacheMissError,
    ConfigurationError,
    ErrorSeverity,
    StoreError,
    get_error_severity,
    is_transient_error,
    should_alert,
)
from chipledger.modules.shared.base_service import BaseService
from chipledger.modules.shared.exceptions import (
    NotFoundError,
    RankingComputationError,
    ValidationError,
)


@pytest.mark.unit
class TestTaxonomy:
    def test_store_error_names_operation_and_target(self):
        error = StoreError("update", "users/u1", reason="document does not exist")

        assert str(error) == "Store error during update on 'users/u1': document does not exist"
        assert error.details["target"] == "users/u1"
        assert error.is_retryable is True
        assert error.to_dict()["error_code"] == "STORE_ERROR"

    def test_ranking_error_message_names_the_kind(self):
        error = RankingComputationError("yearly", RuntimeError("offline"))

        assert str(error) == "yearly ranking fetch error: offline"
        assert error.details["cause_type"] == "RuntimeError"

    def test_domain_error_codes(self):
        assert ValidationError("amount", "must be positive").error_code == "VALIDATION_AMOUNT"
        assert NotFoundError("User", "u1").error_code == "USER_NOT_FOUND"

    def test_severity_helpers(self):
        assert get_error_severity(CacheMissError("users")) is ErrorSeverity.DEBUG
        assert get_error_severity(KeyError("x")) is ErrorSeverity.ERROR
        assert should_alert(ConfigurationError("DATABASE_URL", "missing")) is True
        assert should_alert(ValidationError("amount", "bad")) is False
        assert is_transient_error(CacheMissError("users")) is True
        assert is_transient_error(ValueError("x")) is False


@pytest.mark.unit
class TestBaseServiceLogError:
    def test_level_follows_severity(self, config_manager, mock_event_bus, caplog):
        # Arrange
        service = BaseService(
            config_manager, mock_event_bus, logging.getLogger("chipledger.tests.base")
        )
        caplog.set_level(logging.DEBUG, logger="chipledger.tests.base")

        # Act
        service.log_error("apply_delta", ValidationError("amount", "must be positive"))
        service.log_error("recalc_monthly", StoreError("set", "rankings/monthly_2025_06"))

        # Assert
        validation, store = caplog.records
        assert validation.levelno == logging.INFO
        assert validation.alert is False
        assert store.levelno == logging.ERROR
        assert store.retryable is True
        assert store.alert is True
        assert store.operation == "recalc_monthly"
