"""MusiXBot orchestrator.

Turns public mentions into paid music clips:

    mention "/music <prompt>"
        -> rate limit gate -> payment request -> reply with instructions
    reply to the bot's instructions (optionally "tx:<hash>")
        -> verify payment -> generate -> reply with media
    reply "retry:<order id>"
        -> manual payment recovery -> generate -> reply with media

Inbound posts are only classified in ``handle_post``; the actual work runs on
the TaskQueue one post at a time. Social calls are wrapped by the RetryEngine.
"""
from __future__ import annotations

import math
import re
import time
from typing import Optional, Set

from musixbot.config import BOT_SETTINGS, RETRY_POLICY
from musixbot.integrations.base import ChainVerifier, GenerationProvider, KeyValueStore, SocialClient
from musixbot.jobs.queue import TaskQueue
from musixbot.jobs.scheduler import JobEvent, Scheduler
from musixbot.models.enums import JobEventKind, PaymentStatus, PostKind
from musixbot.models.schemas.checkpoint import RecoveryReport
from musixbot.models.schemas.payments import PaymentRequest
from musixbot.models.schemas.requests import SocialPost, StoredRequest
from musixbot.services.checkpoint import CheckpointManager
from musixbot.services.maintenance import MaintenanceTasks
from musixbot.services.payment_ledger import PaymentLedger
from musixbot.services.request_store import RequestStore
from musixbot.utils.logger import StructuredLogger, get_logger, log_business_event
from musixbot.utils.ratelimiter import RateLimiter
from musixbot.utils.retry import RetryEngine, RetryOptions
from musixbot.utils.time import Clock

PROMPT_PATTERN = re.compile(r"/music\s+(.+)", re.IGNORECASE)
PROOF_PATTERN = re.compile(r"tx:\s*(\S+)", re.IGNORECASE)
RECOVERY_PATTERN = re.compile(r"retry:(\S+)")

USAGE_TEXT = "Please include a description of the music you want to generate. Example: /music lofi beats with piano"
ERROR_TEXT = "Sorry, there was an error processing your request. Please try again later."
GENERATION_ERROR_TEXT = "Sorry, there was an error generating your music. Our team has been notified."
CONFIRMED_TEXT = "Payment confirmed! Generating your music..."
ALREADY_PROCESSED_TEXT = "This request has already been processed."
UNKNOWN_REQUEST_TEXT = "Couldn't find your original request. Please create a new request."


def extract_prompt(text: str) -> Optional[str]:
    match = PROMPT_PATTERN.search(text)
    if not match:
        return None
    prompt = match.group(1).strip()
    return prompt or None


def extract_proof(text: str) -> Optional[str]:
    match = PROOF_PATTERN.search(text)
    return match.group(1) if match else None


def extract_recovery_order(text: str) -> Optional[str]:
    match = RECOVERY_PATTERN.search(text)
    return match.group(1) if match else None


def classify_post(post: SocialPost) -> PostKind:
    if str(BOT_SETTINGS["command"]) in post.text.lower():
        return PostKind.MENTION
    if extract_recovery_order(post.text):
        return PostKind.PAYMENT_RECOVERY
    if post.referenced_post_id:
        return PostKind.PAYMENT_CONFIRMATION
    return PostKind.IGNORED


def format_payment_instructions(payment: PaymentRequest) -> str:
    addresses = payment.destination_addresses
    return "\n".join(
        [
            "Music Generation Request",
            f"Order ID: {payment.order_id}",
            "",
            f"Price: ${payment.amount} USD",
            "Accept payments in:",
            "",
            f"BTC: {addresses.get('btc', '')}",
            f"ETH: {addresses.get('eth', '')}",
            f"SOL: {addresses.get('sol', '')}",
            f"USDT: {addresses.get('usdt', '')}",
            "",
            "Reply 'paid' after sending payment (add tx:<hash> to speed up verification).",
        ]
    )


class MusixBot:
    def __init__(
        self,
        social: SocialClient,
        provider: GenerationProvider,
        verifier: ChainVerifier,
        kv_store: KeyValueStore,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        queue: Optional[TaskQueue] = None,
        scheduler: Optional[Scheduler] = None,
        store: Optional[RequestStore] = None,
        ledger: Optional[PaymentLedger] = None,
        retry_engine: Optional[RetryEngine] = None,
        social_retry: Optional[RetryOptions] = None,
        clock: Clock = time.time,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.social = social
        self.provider = provider
        self.kv_store = kv_store
        self.logger = logger or get_logger(__name__)
        self.rate_limiter = rate_limiter or RateLimiter(clock=clock)
        self.queue = queue or TaskQueue()
        self.scheduler = scheduler or Scheduler(clock=clock)
        self.store = store or RequestStore(clock=clock)
        self.ledger = ledger or PaymentLedger(verifier, self.store, clock=clock)
        self.checkpoint = CheckpointManager(kv_store, self.store, self.ledger, clock=clock)
        self.retry_engine = retry_engine or RetryEngine()
        self.social_retry = social_retry or RetryOptions(
            max_attempts=int(RETRY_POLICY["social_max_attempts"]),
            delay=float(RETRY_POLICY["social_delay_seconds"]),
        )
        self.maintenance = MaintenanceTasks(self)
        self.generation_duration = int(BOT_SETTINGS["generation_duration_seconds"])
        self._delivered: Set[str] = set()
        self._instructed: Set[str] = set()
        self.is_running = False

    # ----------------------------- lifecycle ----------------------------- #
    async def start(self) -> RecoveryReport:
        self.logger.info("Starting bot", bot_name=BOT_SETTINGS["bot_name"])
        report = await self.checkpoint.recover_from_last_checkpoint()
        self.scheduler.add_listener(self._on_job_event)
        self.maintenance.register()
        self.scheduler.start()
        self.is_running = True
        self.logger.info("Bot started", recovered_requests=report.requests, recovered_payments=report.payments)
        return report

    async def shutdown(self) -> None:
        self.logger.info("Bot shutdown initiated")
        self.is_running = False
        self.scheduler.stop()
        await self.scheduler.wait_idle()
        await self.queue.drain()
        await self.checkpoint.save_checkpoint()
        close = getattr(self.kv_store, "close", None)
        if close is not None:
            await close()
        self.logger.info("Bot shutdown complete")

    def _on_job_event(self, event: JobEvent) -> None:
        if event.kind == JobEventKind.ERROR:
            self.logger.warning("Job reported error", job_id=event.job_id, error=str(event.error))
        else:
            self.logger.debug("Job event", job_id=event.job_id, kind=event.kind.value)

    # ----------------------------- inbound ----------------------------- #
    def handle_post(self, post: SocialPost) -> PostKind:
        """Classify ``post`` and queue the matching task. Never blocks."""
        kind = classify_post(post)
        if kind == PostKind.MENTION:
            self.queue.add_task(f"mention-{post.id}", lambda: self.handle_mention(post))
        elif kind == PostKind.PAYMENT_RECOVERY:
            self.queue.add_task(f"retry-{post.id}", lambda: self.handle_payment_recovery(post))
        elif kind == PostKind.PAYMENT_CONFIRMATION:
            self.queue.add_task(f"payment-{post.id}", lambda: self.handle_payment_confirmation(post))
        else:
            self.logger.debug("Post ignored", post_id=post.id)
        return kind

    async def handle_mention(self, post: SocialPost) -> Optional[StoredRequest]:
        if post.id in self._instructed:
            self.logger.info("Duplicate mention ignored", post_id=post.id)
            return self.store.get_request(post.id)

        admitted = self.store.get_request(post.id) is not None
        if not admitted and not self.rate_limiter.check_limit(post.author_id):
            minutes = math.ceil(self.rate_limiter.get_time_until_reset(post.author_id) / 60)
            await self._reply(
                post.id, f"Rate limit exceeded. Please try again in {minutes} minutes."
            )
            return None

        prompt = extract_prompt(post.text)
        if not prompt:
            await self._reply(post.id, USAGE_TEXT)
            return None

        async def create_and_instruct() -> StoredRequest:
            request = self.store.get_request(post.id)
            if request is None:
                payment = self.ledger.create_payment_request(post.author_id, post.id)
                request = self.store.store_request(post.id, post.author_id, prompt, payment)
                log_business_event(
                    "music_requested",
                    {"order_id": payment.order_id, "prompt": prompt},
                    user_id=post.author_id,
                    correlation_id=post.id,
                )
            await self.social.reply(post.id, format_payment_instructions(request.payment))
            self._instructed.add(post.id)
            return request

        try:
            return await self.retry_engine.retry(create_and_instruct, self.social_retry)
        except Exception as e:
            self.logger.error("Error handling mention", post_id=post.id, error=str(e))
            await self._send_error_response(post.id)
            raise

    async def handle_payment_confirmation(self, post: SocialPost) -> bool:
        request = self.store.get_request(post.referenced_post_id or "")
        if request is None:
            self.logger.warning(
                "Payment confirmation for unknown request", post_id=post.id, referenced=post.referenced_post_id
            )
            await self._reply(post.id, UNKNOWN_REQUEST_TEXT)
            return False

        order_id = request.payment.order_id
        log = self.logger.bind(post_id=post.id, order_id=order_id)
        if order_id in self._delivered:
            log.info("Confirmation for delivered order")
            await self._reply(post.id, ALREADY_PROCESSED_TEXT)
            return False
        if self.ledger.get_payment_status(order_id) == PaymentStatus.COMPLETED.value:
            log.info("Paid order not yet delivered, delivering")
            return await self.deliver(request, post.id)

        try:
            verified = await self.ledger.verify_payment(order_id, extract_proof(post.text))
        except Exception as e:
            log.error("Error handling payment confirmation", error=str(e))
            await self._send_error_response(post.id)
            raise

        if verified:
            return await self.deliver(request, post.id)
        await self._reply(
            post.id,
            f"Payment not found or not confirmed yet for order {order_id}. Please ensure you've sent "
            f"the correct amount and wait for blockchain confirmation. Reply 'retry:{order_id}' to check again.",
        )
        return False

    async def handle_payment_recovery(self, post: SocialPost) -> bool:
        order_id = extract_recovery_order(post.text)
        if not order_id:
            return False

        try:
            verified = await self.ledger.retry_failed_payment(order_id)
        except Exception as e:
            self.logger.error("Error in payment recovery", post_id=post.id, order_id=order_id, error=str(e))
            await self._send_error_response(post.id)
            raise

        if not verified:
            await self._reply(
                post.id,
                "Payment verification failed. Please ensure payment was sent correctly and try again.",
            )
            return False

        request = self.store.get_request(post.referenced_post_id or "") or self.store.find_by_order_id(order_id)
        if request is None:
            self.logger.warning("Recovered payment has no stored request", order_id=order_id)
            return False
        return await self.deliver(request, post.id)

    # ----------------------------- delivery ----------------------------- #
    async def deliver(self, request: StoredRequest, reply_to: str) -> bool:
        """Generate the clip for a paid request and post it.

        An order counts as delivered only once its media reply is posted; a
        failed attempt releases it so a later attempt can deliver it.
        """
        order_id = request.payment.order_id
        if order_id in self._delivered:
            self.logger.debug("Order already delivered", order_id=order_id)
            return False
        self._delivered.add(order_id)

        try:
            await self._social_call(lambda: self.social.reply(reply_to, CONFIRMED_TEXT))
            try:
                media_ref = await self.provider.generate(request.prompt, self.generation_duration)
            except Exception as e:
                self.logger.error("Error generating music", order_id=order_id, error=str(e))
                self._delivered.discard(order_id)
                await self._reply(reply_to, GENERATION_ERROR_TEXT)
                return False
            await self._social_call(
                lambda: self.social.reply_with_media(
                    reply_to, f"Here's your AI-generated music!\nPrompt: \"{request.prompt}\"", media_ref
                )
            )
        except Exception:
            self._delivered.discard(order_id)
            raise

        log_business_event(
            "music_delivered",
            {"order_id": order_id, "media_ref": media_ref},
            user_id=request.user_id,
            correlation_id=request.correlation_id,
        )
        return True

    def prune_tracking(self) -> int:
        """Forget delivered orders and instructed posts whose records have been purged."""
        delivered = {oid for oid in self._delivered if self.ledger.get_payment(oid) is None}
        instructed = {pid for pid in self._instructed if self.store.get_request(pid) is None}
        self._delivered -= delivered
        self._instructed -= instructed
        return len(delivered) + len(instructed)

    async def notify_payment_failed(self, request: StoredRequest) -> None:
        order_id = request.payment.order_id
        await self._reply(
            request.correlation_id,
            f"Your payment window for order {order_id} has closed without a confirmed payment. "
            f"If you already paid, reply 'retry:{order_id}'.",
        )

    # ----------------------------- social helpers ----------------------------- #
    async def _social_call(self, call) -> None:
        await self.retry_engine.retry(call, self.social_retry)

    async def _reply(self, post_id: str, text: str) -> None:
        await self._social_call(lambda: self.social.reply(post_id, text))

    async def _send_error_response(self, post_id: str) -> None:
        try:
            await self.social.reply(post_id, ERROR_TEXT)
        except Exception as e:
            self.logger.error("Failed to send error response", post_id=post_id, error=str(e))

    # ----------------------------- inspection ----------------------------- #
    def health(self) -> dict:
        kv_snapshot = getattr(self.kv_store, "snapshot", None)
        return {
            "running": self.is_running,
            "queue": self.queue.snapshot(),
            "store": self.store.snapshot(),
            "ledger": self.ledger.snapshot(),
            "rate_limiter": self.rate_limiter.snapshot(),
            "checkpoint": self.checkpoint.snapshot(),
            "kv_store": kv_snapshot() if kv_snapshot else None,
            "jobs": len(self.scheduler.get_all_jobs()),
        }


async def create_bot() -> MusixBot:
    """Wire the bot with the configured adapters."""
    from musixbot.integrations.chain import JsonRpcChainVerifier
    from musixbot.integrations.kv_store import create_kv_store
    from musixbot.integrations.music import HttpGenerationProvider
    from musixbot.integrations.social import DryRunSocialClient

    kv_store = await create_kv_store()
    if not BOT_SETTINGS["dry_run"]:
        get_logger(__name__).warning("No live social client configured; replies are logged only")
    return MusixBot(
        social=DryRunSocialClient(),
        provider=HttpGenerationProvider(),
        verifier=JsonRpcChainVerifier(kv_store),
        kv_store=kv_store,
    )


__all__ = [
    "MusixBot",
    "create_bot",
    "classify_post",
    "extract_prompt",
    "extract_proof",
    "extract_recovery_order",
    "format_payment_instructions",
]
