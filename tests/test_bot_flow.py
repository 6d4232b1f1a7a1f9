"""End-to-end orchestration: mention -> payment -> verification -> delivery."""
import asyncio

from musixbot.models.enums import PostKind
from musixbot.models.schemas.requests import SocialPost
from musixbot.services.bot import classify_post, extract_proof, extract_prompt, extract_recovery_order

from conftest import build_bot


def mention(post_id="m1", author="user-1234", text="@MusiXBot /music lofi beats with piano"):
    return SocialPost(id=post_id, author_id=author, text=text)


def reply(post_id, to, text="paid", author="user-1234"):
    return SocialPost(id=post_id, author_id=author, text=text, referenced_post_id=to)


def test_text_parsing_helpers():
    assert extract_prompt("/music   synthwave at night ") == "synthwave at night"
    assert extract_prompt("/MUSIC jazz") == "jazz"
    assert extract_prompt("/music") is None
    assert extract_proof("paid tx:0xdeadbeef thanks") == "0xdeadbeef"
    assert extract_proof("paid") is None
    assert extract_recovery_order("retry:PAY-1-1234") == "PAY-1-1234"
    assert classify_post(mention()) == PostKind.MENTION
    assert classify_post(reply("r1", "m1", "retry:PAY-1")) == PostKind.PAYMENT_RECOVERY
    assert classify_post(reply("r1", "m1")) == PostKind.PAYMENT_CONFIRMATION
    assert classify_post(SocialPost(id="x", author_id="y", text="hello")) == PostKind.IGNORED


def test_mention_then_proof_reply_delivers_music(bot, social, verifier, provider):
    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()
        verifier.script = [True]
        bot.handle_post(reply("r1", "m1", "paid tx:0xabc"))
        await bot.queue.drain()

    asyncio.run(scenario())

    instructions = social.texts_for("m1")
    assert len(instructions) == 1
    order_id = bot.store.get_request("m1").payment.order_id
    assert f"Order ID: {order_id}" in instructions[0]
    assert "Price: $10 USD" in instructions[0]

    assert verifier.calls == [("proof", "0xabc")]
    assert bot.ledger.get_payment_status(order_id) == "completed"
    assert social.texts_for("r1") == ["Payment confirmed! Generating your music..."]
    assert provider.calls == [("lofi beats with piano", 30)]
    assert social.media == [("r1", "Here's your AI-generated music!\nPrompt: \"lofi beats with piano\"", provider.media_ref)]


def test_unverified_reply_gets_failure_message_with_order(bot, social, verifier):
    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()
        bot.handle_post(reply("r1", "m1"))
        await bot.queue.drain()

    asyncio.run(scenario())
    order_id = bot.store.get_request("m1").payment.order_id
    [text] = social.texts_for("r1")
    assert order_id in text
    assert f"retry:{order_id}" in text
    assert verifier.calls == [("balance", None)]


def test_completed_request_is_not_processed_twice(bot, social, verifier, provider):
    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()
        verifier.script = [True]
        bot.handle_post(reply("r1", "m1", "tx:0x1"))
        bot.handle_post(reply("r2", "m1", "tx:0x1"))
        await bot.queue.drain()

    asyncio.run(scenario())
    assert social.texts_for("r2") == ["This request has already been processed."]
    assert len(provider.calls) == 1


def test_rate_limited_user_is_told_when_to_retry(bot, social):
    bot.rate_limiter.max_requests = 1

    async def scenario():
        bot.handle_post(mention("m1"))
        bot.handle_post(mention("m2"))
        await bot.queue.drain()

    asyncio.run(scenario())
    assert social.texts_for("m2") == ["Rate limit exceeded. Please try again in 60 minutes."]
    assert bot.store.get_request("m2") is None


def test_mention_without_prompt_gets_usage_hint(bot, social):
    async def scenario():
        bot.handle_post(mention(text="hey /music"))
        await bot.queue.drain()

    asyncio.run(scenario())
    [text] = social.texts_for("m1")
    assert text.startswith("Please include a description")
    assert len(bot.store) == 0


def test_duplicate_mention_does_not_create_second_payment(bot, social):
    async def scenario():
        bot.handle_post(mention())
        bot.handle_post(mention())
        await bot.queue.drain()

    asyncio.run(scenario())
    assert len(social.texts_for("m1")) == 1
    assert len(bot.ledger.get_pending_payments()) == 1


def test_transient_social_failures_are_retried(clock, verifier, provider):
    from conftest import RecordingSocialClient

    flaky_social = RecordingSocialClient(failures=2)
    bot = build_bot(clock=clock, verifier=verifier, social=flaky_social, provider=provider)

    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()

    asyncio.run(scenario())
    assert len(flaky_social.texts_for("m1")) == 1
    assert len(bot.ledger.get_pending_payments()) == 1
    assert bot.queue.dropped == 0


def test_exhausted_social_retries_drop_the_task(clock, verifier, provider):
    from conftest import RecordingSocialClient

    dead_social = RecordingSocialClient(failures=10_000)
    bot = build_bot(clock=clock, verifier=verifier, social=dead_social, provider=provider)

    async def scenario():
        bot.handle_post(mention())
        bot.handle_post(SocialPost(id="noise", author_id="z", text="just chatting"))
        await bot.queue.drain()

    asyncio.run(scenario())
    assert bot.queue.dropped == 1
    # the payment is created once even though the task ran three times
    assert len(bot.ledger.get_pending_payments()) == 1


def test_generation_failure_sends_apology(bot, social, verifier, provider):
    provider.fail = True

    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()
        verifier.script = [True]
        bot.handle_post(reply("r1", "m1", "tx:0x1"))
        await bot.queue.drain()

    asyncio.run(scenario())
    assert social.texts_for("r1")[-1].startswith("Sorry, there was an error generating your music")
    assert social.media == []


def test_recovery_reply_retries_failed_payment(bot, social, verifier, provider):
    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()
        order_id = bot.store.get_request("m1").payment.order_id
        for _ in range(3):
            await bot.ledger.verify_payment(order_id)
        assert bot.ledger.get_payment_status(order_id) == "failed"
        verifier.script = [True]
        bot.handle_post(reply("r9", "m1", f"retry:{order_id}"))
        await bot.queue.drain()
        return order_id

    order_id = asyncio.run(scenario())
    assert bot.ledger.get_payment_status(order_id) == "completed"
    assert len(social.media) == 1
    assert social.media[0][0] == "r9"


def test_maintenance_jobs(bot, social, verifier, provider, clock):
    async def scenario():
        bot.handle_post(mention("m1", author="user-0001"))
        bot.handle_post(mention("m2", author="user-0002"))
        await bot.queue.drain()

        # payment-check: m1 confirms on the balance check, m2 does not
        order_m1 = bot.store.get_request("m1").payment.order_id
        verifier.script = [True, False]
        result = await bot.maintenance.check_pending_payments()
        assert result == {"checked": 2, "delivered": 1, "failed": 0, "errors": 0}

        # request-expiry: m2 is now stale and past its payment window
        clock.advance(3601)
        expiry = await bot.maintenance.check_expired_requests()
        assert expiry == {"expired": 1, "notified": 1, "errors": 0}
        assert bot.store.get_request("m2").expired is True

        assert await bot.maintenance.save_checkpoint() is True
        health = await bot.maintenance.health_check()
        assert health["queue"]["depth"] == 0

        clock.advance(172_800)
        cleaned = await bot.maintenance.cleanup()
        assert cleaned == {"requests": 2, "payments": 2, "rate_windows": 2, "tracking": 3}
        assert bot.ledger.get_payment(order_m1) is None
        assert bot.prune_tracking() == 0

    asyncio.run(scenario())
    assert social.media[0][0] == "m1"
    assert "has closed without a confirmed payment" in social.texts_for("m2")[-1]


def test_start_recovers_and_shutdown_checkpoints(clock, verifier, social, provider, kv_store):
    first = build_bot(clock=clock, verifier=verifier, social=social, provider=provider, kv_store=kv_store)

    async def run_first():
        await first.start()
        first.handle_post(mention())
        await first.queue.drain()
        await first.shutdown()
        return first.store.get_request("m1").payment.order_id

    order_id = asyncio.run(run_first())
    assert len(first.scheduler.get_all_jobs()) == 5

    second = build_bot(clock=clock, verifier=verifier, social=social, provider=provider, kv_store=kv_store)

    async def run_second():
        report = await second.start()
        verifier.script = [True]
        verified = await second.ledger.verify_payment(order_id)
        await second.shutdown()
        return report, verified

    report, verified = asyncio.run(run_second())
    assert report.requests == 1
    assert verified is True


def test_failed_payment_is_announced_by_payment_check(bot, social, clock):
    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()
        # an hour of scheduler ticks: payment-check every 5 min, request-expiry every 15
        for minute in range(5, 61, 5):
            clock.advance(300)
            await bot.maintenance.check_pending_payments()
            if minute % 15 == 0:
                await bot.maintenance.check_expired_requests()

    asyncio.run(scenario())
    order_id = bot.store.get_request("m1").payment.order_id
    assert bot.ledger.get_payment_status(order_id) == "failed"
    notices = [t for t in social.texts_for("m1") if "has closed without a confirmed payment" in t]
    assert len(notices) == 1
    assert f"retry:{order_id}" in notices[0]


def test_failed_media_post_is_retried_until_delivered(clock, verifier, provider):
    from conftest import RecordingSocialClient

    social = RecordingSocialClient(media_failures=3)
    bot = build_bot(clock=clock, verifier=verifier, social=social, provider=provider)

    async def scenario():
        bot.handle_post(mention())
        await bot.queue.drain()
        verifier.script = [True]
        bot.handle_post(reply("r1", "m1", "tx:0x1"))
        await bot.queue.drain()
        bot.handle_post(reply("r2", "m1", "tx:0x1"))
        await bot.queue.drain()

    asyncio.run(scenario())
    assert len(social.media) == 1
    assert social.media[0][0] == "r1"
    assert len(provider.calls) == 2
    assert "This request has already been processed." not in social.texts_for("r1")
    assert social.texts_for("r2") == ["This request has already been processed."]
    assert bot.queue.dropped == 0


def test_confirmation_for_unknown_request_gets_reply(bot, social, verifier):
    async def scenario():
        bot.handle_post(reply("r1", "never-seen"))
        await bot.queue.drain()

    asyncio.run(scenario())
    assert social.texts_for("r1") == ["Couldn't find your original request. Please create a new request."]
    assert verifier.calls == []