"""Observability utilities."""

import sentry_sdk
from opentelemetry import trace

from occtx.exceptions import TransactionError


async def observe_exception(exc: Exception) -> None:
    """Observe exception.

    Records the exception on the current span and reports it to Sentry. Transaction errors
    are tagged with the transaction identity and attempt.
    """

    span = trace.get_current_span()
    span.record_exception(exc)
    span.set_status(trace.Status(trace.StatusCode.ERROR, str(exc)))

    with sentry_sdk.new_scope() as scope:
        if isinstance(exc, TransactionError) and exc.transaction_id is not None:
            span.set_attribute("occtx.transaction_id", exc.transaction_id)
            scope.set_tag("occtx.transaction_id", exc.transaction_id)
        if isinstance(exc, TransactionError) and exc.attempt_id is not None:
            span.set_attribute("occtx.attempt_id", exc.attempt_id)
            scope.set_tag("occtx.attempt_id", exc.attempt_id)
        sentry_sdk.capture_exception(exc)
