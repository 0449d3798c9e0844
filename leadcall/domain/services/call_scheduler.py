"""
Call Scheduler
Delayed outbound calling with exponential-backoff retries.

Each scheduled call runs as one asyncio task (a "chain") that waits for its
delay, calls the provider, and re-arms itself after a failure until it
succeeds, is skipped, is cancelled, or runs out of attempts.

Cancellation is cooperative: every chain carries a cancellation event that is
checked before each attempt and before each retry is armed. A provider request
already in flight is never aborted.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from leadcall.domain.interfaces.telephony_provider import (
    CallOptions,
    CallResult,
    TelephonyProvider,
    mask_phone_number,
)
from leadcall.domain.models.call_record import CallRecord, CallStatus

logger = logging.getLogger(__name__)


@dataclass
class _CallChain:
    """Cancelable handle for a pending call chain"""
    call_id: str
    phone_number: str
    options: Dict[str, Any]
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    in_flight: bool = False


class CallScheduler:
    """
    Schedules outbound calls to leads through a single telephony provider.

    The provider is chosen once at startup; None means calling is disabled
    and schedule_call() is a logged no-op.
    """

    # Exponential backoff: 2s, 4s, 8s... capped at 30s
    DEFAULT_RETRY_BASE_SECONDS = 2.0
    DEFAULT_RETRY_MAX_SECONDS = 30.0

    def __init__(
        self,
        provider: Optional[TelephonyProvider],
        call_delay_seconds: float = 30.0,
        max_retries: int = 3,
        retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
        retry_max_seconds: float = DEFAULT_RETRY_MAX_SECONDS,
        status_callback_url: Optional[str] = None
    ):
        self._provider = provider
        self.call_delay_seconds = call_delay_seconds
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.status_callback_url = status_callback_url

        self._history: Dict[str, CallRecord] = {}
        self._pending: Dict[str, _CallChain] = {}
        self._shutting_down = False

        logger.info(
            f"Call scheduler initialized: provider={self.provider_name}, "
            f"delay={call_delay_seconds}s, max_retries={max_retries}"
        )

    @property
    def provider_name(self) -> Optional[str]:
        return self._provider.name if self._provider else None

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    mask_phone_number = staticmethod(mask_phone_number)

    @staticmethod
    def generate_call_id(lead_metadata: Dict[str, Any]) -> str:
        """call_<lead_id>_<epoch_ms>"""
        lead_id = lead_metadata.get("lead_id") or "unknown"
        return f"call_{lead_id}_{int(time.time() * 1000)}"

    def _unique_call_id(self, lead_metadata: Dict[str, Any]) -> str:
        """generate_call_id() with a _<n> suffix when the id is already taken"""
        base = self.generate_call_id(lead_metadata)
        call_id = base
        suffix = 2
        while call_id in self._history:
            call_id = f"{base}_{suffix}"
            suffix += 1
        return call_id

    def calculate_retry_delay(self, attempt_number: int) -> float:
        """Backoff before the attempt following attempt_number (1-based)."""
        return min(
            self.retry_base_seconds * (2 ** (attempt_number - 1)),
            self.retry_max_seconds
        )

    def schedule_call(
        self,
        phone_number: Optional[str],
        lead_metadata: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Schedule a call to a lead.

        Args:
            phone_number: Lead's phone number
            lead_metadata: Lead info (lead_id, name) for labeling and logging
            options: delay (seconds), status_callback_url, timeout_seconds,
                plus any provider-specific extras

        Returns:
            call_id, or None if the call was not scheduled
        """
        lead_metadata = dict(lead_metadata or {})
        options = dict(options or {})

        if self._provider is None:
            logger.info("Call scheduling skipped - No provider enabled")
            return None

        if not phone_number:
            logger.warning(f"Cannot schedule call - no phone number provided (lead={lead_metadata.get('lead_id')})")
            return None

        if self._shutting_down:
            logger.warning("Cannot schedule call - service is shutting down")
            return None

        call_id = self._unique_call_id(lead_metadata)
        delay = options.pop("delay", None)
        if delay is None:
            delay = self.call_delay_seconds

        logger.info(
            f"Scheduling call {call_id}: phone={self.mask_phone_number(phone_number)}, "
            f"lead={lead_metadata.get('name')}, delay={delay}s"
        )

        record = CallRecord(
            call_id=call_id,
            phone_number=phone_number,
            lead_metadata=lead_metadata
        )
        self._history[call_id] = record

        record.next_attempt_at = datetime.utcnow() + timedelta(seconds=delay)

        chain = _CallChain(call_id=call_id, phone_number=phone_number, options=options)
        chain.task = asyncio.create_task(self._run_chain(chain, delay))
        self._pending[call_id] = chain

        return call_id

    async def _wait(self, chain: _CallChain, delay: float) -> bool:
        """Sleep for delay. Returns True if the chain was cancelled meanwhile."""
        try:
            await asyncio.wait_for(chain.cancel_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return chain.cancel_event.is_set()

    def _should_stop(self, chain: _CallChain) -> bool:
        return chain.cancel_event.is_set() or self._shutting_down

    async def _run_chain(self, chain: _CallChain, delay: float) -> None:
        """Drive one call chain until a terminal outcome."""
        record = self._history[chain.call_id]

        try:
            while True:
                if await self._wait(chain, delay) or self._should_stop(chain):
                    return

                retry_delay = await self._execute_call(chain, record)
                if retry_delay is None:
                    return

                if self._should_stop(chain):
                    logger.info(f"Retry not armed for {chain.call_id}: cancelled or shutting down")
                    if record.status == CallStatus.FAILED and chain.cancel_event.is_set():
                        record.status = CallStatus.CANCELLED
                    return

                logger.info(
                    f"Scheduling retry for {chain.call_id}: attempt {record.attempt_count + 1}, "
                    f"delay={retry_delay}s"
                )
                record.status = CallStatus.PENDING
                record.next_attempt_at = datetime.utcnow() + timedelta(seconds=retry_delay)
                delay = retry_delay

        except Exception as e:
            logger.error(f"Call chain {chain.call_id} crashed: {e}", exc_info=True)
            record.status = CallStatus.FAILED
            record.last_error = str(e)

        finally:
            record.next_attempt_at = None
            if self._pending.get(chain.call_id) is chain:
                del self._pending[chain.call_id]

    def _build_call_options(self, chain: _CallChain, record: CallRecord) -> CallOptions:
        extras = {
            k: v for k, v in chain.options.items()
            if k not in CallOptions.model_fields
        }
        return CallOptions(
            custom_field=chain.call_id,
            status_callback_url=chain.options.get("status_callback_url") or self.status_callback_url,
            timeout_seconds=chain.options.get("timeout_seconds"),
            lead_id=str(record.lead_id) if record.lead_id is not None else None,
            lead_name=str(record.lead_name) if record.lead_name is not None else None,
            **extras
        )

    async def _execute_call(self, chain: _CallChain, record: CallRecord) -> Optional[float]:
        """
        Make one call attempt.

        Returns:
            Delay before the next attempt, or None when the chain is finished
        """
        record.attempt_count += 1
        record.last_attempt_at = datetime.utcnow()
        record.next_attempt_at = None

        logger.info(
            f"Executing call {chain.call_id}: attempt {record.attempt_count}/{self.max_retries}, "
            f"phone={self.mask_phone_number(chain.phone_number)}, lead={record.lead_name}"
        )

        result: Optional[CallResult] = None
        error: Optional[str] = None

        chain.in_flight = True
        try:
            result = await self._provider.make_call(
                chain.phone_number,
                self._build_call_options(chain, record)
            )
        except Exception as e:
            error = str(e) or e.__class__.__name__
        finally:
            chain.in_flight = False

        if result is not None and result.success:
            logger.info(f"Call initiated successfully: {chain.call_id}, call_sid={result.call_sid}")
            record.status = CallStatus.SUCCESS
            record.provider_call_id = result.call_sid
            record.last_error = None
            return None

        if result is not None and result.skipped:
            logger.info(f"Call skipped: {chain.call_id}, reason={result.reason}")
            record.status = CallStatus.SKIPPED
            record.skip_reason = result.reason
            return None

        if error is None:
            error = "Provider returned neither success nor skipped"

        logger.error(
            f"Call execution failed: {chain.call_id}, attempt {record.attempt_count}, "
            f"phone={self.mask_phone_number(chain.phone_number)}, error={error}"
        )
        record.status = CallStatus.FAILED
        record.last_error = error

        if chain.cancel_event.is_set():
            record.status = CallStatus.CANCELLED
            return None

        if record.attempt_count < self.max_retries:
            return self.calculate_retry_delay(record.attempt_count)

        logger.error(f"Max retries reached, giving up: {chain.call_id} ({record.attempt_count} attempts)")
        return None

    def cancel_call(self, call_id: str) -> bool:
        """
        Cancel a pending call chain.

        An attempt already in flight completes; its success is still
        recorded but no retry follows.

        Returns:
            True if a pending chain was found and cancelled
        """
        chain = self._pending.pop(call_id, None)
        if chain is None:
            return False

        chain.cancel_event.set()

        record = self._history.get(call_id)
        if record is not None:
            record.status = CallStatus.CANCELLED
            record.next_attempt_at = None

        logger.info(f"Call cancelled: {call_id}")
        return True

    def get_call_status(self, call_id: str) -> Optional[CallRecord]:
        return self._history.get(call_id)

    def get_pending_calls(self) -> List[str]:
        return list(self._pending.keys())

    def get_stats(self) -> Dict[str, Any]:
        by_status = {status.value: 0 for status in CallStatus}
        for record in self._history.values():
            by_status[record.status.value] = by_status.get(record.status.value, 0) + 1

        return {
            "provider": self.provider_name,
            "pending": len(self._pending),
            "in_flight": sum(1 for chain in self._pending.values() if chain.in_flight),
            "total": len(self._history),
            "by_status": by_status,
        }

    async def wait_until_idle(self) -> None:
        """Wait for every current chain to reach a terminal outcome."""
        while self._pending:
            tasks = [chain.task for chain in self._pending.values() if chain.task]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Stop accepting calls and cancel every pending chain.

        Chains waiting on a timer are cancelled and awaited. Attempts in
        flight complete on their own and never arm a retry.
        """
        logger.info(f"Shutting down call scheduler: {len(self._pending)} pending calls")

        self._shutting_down = True

        chains = list(self._pending.values())
        self._pending.clear()

        waiting = []
        for chain in chains:
            chain.cancel_event.set()
            if chain.in_flight:
                continue
            record = self._history.get(chain.call_id)
            if record is not None:
                record.status = CallStatus.CANCELLED
            if chain.task is not None:
                waiting.append(chain.task)
            logger.info(f"Cancelled pending call during shutdown: {chain.call_id}")

        if waiting:
            await asyncio.gather(*waiting, return_exceptions=True)

        logger.info("Call scheduler shutdown complete")
