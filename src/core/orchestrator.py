# src/core/orchestrator.py
"""Response orchestration for acknowledged events.

For every event the orchestrator:

1. Builds the prompt and estimates input/output tokens.
2. Prices the call against the injected price table.
3. Refuses calls above the cost ceiling (no model call is made).
4. Calls the model through the RetryExecutor.
5. Delivers the reply and logs model, tokens, attempts and latency.
6. On upstream failure, logs the error and sends a generic notice.

Raw upstream error text never reaches the user.
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol

from src.core.ack_gate import GENERIC_FAILURE_TEXT, ResponseHandle
from src.core.correlation import CorrelationContext
from src.core.cost import CostEstimate, PriceTable, build_estimate, should_reject
from src.core.errors import (
    CostRejected,
    ShutdownInterrupted,
    ThreadlineError,
    UnknownModel,
    UpstreamError,
)
from src.core.events import Event
from src.core.model import ModelClient, ModelReply
from src.core.retry import RetryExecutor
from src.utils.logging import log_operation, truncate_for_log

logger = logging.getLogger(__name__)

REJECTION_TEXT = (
    ":money_with_wings: This request is too large to answer within the configured "
    "cost limit. Try a shorter question."
)


class Delivery(Protocol):
    async def deliver(
        self, handle: ResponseHandle, text: str, prompt: str | None = None
    ) -> None: ...

    async def notify_failure(self, handle: ResponseHandle, text: str) -> None: ...


class OrchestrationStatus(str, Enum):
    DELIVERED = "delivered"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class OrchestrationResult:
    """What happened to one event."""

    status: OrchestrationStatus
    estimate: CostEstimate | None = None
    attempts: int = 0
    latency_ms: float = 0.0
    text: str | None = None
    error: ThreadlineError | None = None


class ResponseOrchestrator:
    """Cost gate -> retrying model call -> delivery, for one event at a time.

    Holds only read-only configuration, so a single instance is shared by
    all concurrently handled events.
    """

    def __init__(
        self,
        model_client: ModelClient,
        delivery: Delivery,
        executor: RetryExecutor,
        price_table: PriceTable,
        model_id: str,
        cost_ceiling: Decimal,
        projected_output_tokens: int = 1024,
        chars_per_token: int = 4,
        rejection_text: str = REJECTION_TEXT,
        failure_text: str = GENERIC_FAILURE_TEXT,
    ) -> None:
        self._model_client = model_client
        self._delivery = delivery
        self._executor = executor
        self._price_table = price_table
        self.model_id = model_id
        self.cost_ceiling = cost_ceiling
        self._output_tokens = projected_output_tokens
        self._chars_per_token = chars_per_token
        self._rejection_text = rejection_text
        self._failure_text = failure_text

    async def respond(
        self,
        event: Event,
        context: CorrelationContext,
        handle: ResponseHandle,
        prompt: str | None = None,
    ) -> OrchestrationResult:
        """Produce and deliver a model response for an acknowledged event.

        Args:
            event: The inbound event.
            context: Correlation context for log entries.
            handle: Follow-up target captured at ack time.
            prompt: Prompt override; defaults to the event text.

        Returns:
            OrchestrationResult describing the outcome.
        """
        started = time.monotonic()
        content = prompt if prompt is not None else event.text

        try:
            estimate = build_estimate(
                content,
                self.model_id,
                self._price_table,
                output_tokens=self._output_tokens,
                chars_per_token=self._chars_per_token,
            )
        except UnknownModel as e:
            log_operation(
                logger,
                "respond-to-message",
                context,
                level=logging.ERROR,
                message="No pricing for configured model",
                model=e.model_id,
                error_type=type(e).__name__,
            )
            await self._delivery.notify_failure(handle, self._failure_text)
            return OrchestrationResult(OrchestrationStatus.FAILED, error=e)

        if should_reject(estimate.cost, self.cost_ceiling):
            log_operation(
                logger,
                "cost-rejection",
                context,
                message="Request rejected by cost ceiling",
                model=estimate.model_id,
                input_tokens=estimate.input_tokens,
                output_tokens=estimate.output_tokens,
                estimated_cost=str(estimate.cost),
                cost_ceiling=str(self.cost_ceiling),
            )
            await self._delivery.deliver(handle, self._rejection_text)
            return OrchestrationResult(
                OrchestrationStatus.REJECTED,
                estimate=estimate,
                error=CostRejected(estimate, self.cost_ceiling),
            )

        logger.debug("Calling model for: %s", truncate_for_log(content))
        try:
            result = await self._executor.execute(
                lambda: self._model_client.generate(content, self.model_id),
                context=context,
                name="model-call",
            )
        except (UpstreamError, ShutdownInterrupted) as e:
            latency_ms = round((time.monotonic() - started) * 1000, 2)
            log_operation(
                logger,
                "respond-to-message",
                context,
                level=logging.ERROR,
                message="Model call failed",
                exc_info=True,
                model=self.model_id,
                retry_attempt=getattr(e, "attempts", None),
                status_code=getattr(e, "status_code", None),
                error_type=type(e).__name__,
                latency_ms=latency_ms,
            )
            await self._delivery.notify_failure(handle, self._failure_text)
            return OrchestrationResult(
                OrchestrationStatus.FAILED,
                estimate=estimate,
                attempts=getattr(e, "attempts", 0),
                latency_ms=latency_ms,
                error=e,
            )

        reply: ModelReply = result.value
        for tool in reply.tool_calls:
            log_operation(
                logger,
                "tool-call",
                context,
                model=self.model_id,
                tool=tool,
                retry_attempt=result.attempts,
            )

        text = reply.text or "(no response)"
        await self._delivery.deliver(handle, text, prompt=content)

        latency_ms = round((time.monotonic() - started) * 1000, 2)
        log_operation(
            logger,
            "respond-to-message",
            context,
            message="Response delivered",
            model=self.model_id,
            input_tokens=reply.input_tokens or estimate.input_tokens,
            output_tokens=reply.output_tokens or estimate.output_tokens,
            estimated_cost=str(estimate.cost),
            retry_attempt=result.attempts,
            latency_ms=latency_ms,
        )
        return OrchestrationResult(
            OrchestrationStatus.DELIVERED,
            estimate=estimate,
            attempts=result.attempts,
            latency_ms=latency_ms,
            text=text,
        )
