"""
Tests for Sentry error context utilities.
"""

from unittest.mock import MagicMock, patch

from src.utils.sentry_context import (
    capture_database_error,
    capture_error,
    capture_payment_error,
    capture_payment_message,
)


def _scope_patch():
    scope = MagicMock()
    scope.capture_exception.return_value = "event-1"
    scope.capture_message.return_value = "event-2"
    new_scope = MagicMock()
    new_scope.return_value.__enter__.return_value = scope
    return scope, patch("src.utils.sentry_context.sentry_sdk.new_scope", new_scope)


class TestCaptureError:
    def test_sets_context_and_tags(self):
        scope, patcher = _scope_patch()
        error = ValueError("boom")

        with patcher:
            event_id = capture_error(error, "request", {"path": "/x"}, tags={"status": 500})

        assert event_id == "event-1"
        scope.set_context.assert_called_once_with("request", {"path": "/x"})
        scope.set_tag.assert_called_once_with("status", "500")
        scope.capture_exception.assert_called_once_with(error)

    def test_sdk_failure_is_contained(self):
        with patch("src.utils.sentry_context.sentry_sdk.new_scope", side_effect=RuntimeError("sdk")):
            assert capture_error(ValueError("boom")) is None


class TestDomainHelpers:
    def test_database_error_context(self):
        scope, patcher = _scope_patch()

        with patcher:
            capture_database_error(
                Exception("timeout"), "upsert", "subscriptions", details={"user_id": "u1"}
            )

        scope.set_context.assert_called_once_with(
            "database", {"operation": "upsert", "table": "subscriptions", "user_id": "u1"}
        )

    def test_payment_error_context(self):
        scope, patcher = _scope_patch()

        with patcher:
            capture_payment_error(
                Exception("api down"), "webhook", user_id="u1", details={"event_id": "evt_1"}
            )

        context = scope.set_context.call_args.args[1]
        assert context == {
            "operation": "webhook",
            "provider": "stripe",
            "user_id": "u1",
            "event_id": "evt_1",
        }

    def test_payment_message(self):
        scope, patcher = _scope_patch()

        with patcher:
            event_id = capture_payment_message(
                "Unlinked checkout session", "checkout_completed", level="error"
            )

        assert event_id == "event-2"
        scope.capture_message.assert_called_once_with("Unlinked checkout session", level="error")
