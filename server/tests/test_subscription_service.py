from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import select

from gateway_sync.core.errors import ErrorKind, GatewayError, SyncError
from gateway_sync.models import PlanStatus, Subscription, SubscriptionStatus
from gateway_sync.schemas.subscription import SubscriptionCreate, SubscriptionFilters, SubscriptionUpdate
from gateway_sync.services.subscription_service import LOCK_PREFIX, SubscriptionOrchestrator, month_bounds

from conftest import ok


def subscribe(card_id, plan_id="GOLD", user_id="user-1"):
    return SubscriptionCreate(
        user_id=user_id,
        user_email=f"{user_id}@example.com",
        card_id=card_id,
        plan_id=plan_id,
        tyc=True,
    )


def fake_redis(acquired: bool) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[acquired, True])
    redis_client = MagicMock()
    redis_client.pipeline.return_value.__aenter__.return_value = pipe
    redis_client.delete = AsyncMock()
    return redis_client


@pytest_asyncio.fixture
async def wallet(factory):
    customer = await factory.customer("user-1")
    card = await factory.card(customer)
    return customer, card


class TestCreateGates:
    @pytest.mark.asyncio
    async def test_missing_customer(self, session, gateway, settings, factory):
        await factory.plan("GOLD")

        with pytest.raises(SyncError) as exc_info:
            await SubscriptionOrchestrator(session, gateway, settings).create(subscribe("crd_test_0001"))

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert gateway.request.await_count == 0

    @pytest.mark.asyncio
    async def test_card_of_another_customer(self, session, gateway, settings, factory):
        await factory.customer("user-1")
        stranger = await factory.customer("user-2")
        foreign_card = await factory.card(stranger)
        await factory.plan("GOLD")

        with pytest.raises(SyncError) as exc_info:
            await SubscriptionOrchestrator(session, gateway, settings).create(subscribe(foreign_card.culqi_card_id))

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert gateway.request.await_count == 0

    @pytest.mark.asyncio
    async def test_missing_plan_never_calls_gateway(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)

        with pytest.raises(SyncError) as exc_info:
            await SubscriptionOrchestrator(session, gateway, settings).create(
                subscribe(card.culqi_card_id, plan_id="NOPE")
            )

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.message == "Plan not found"
        assert gateway.request.await_count == 0

    @pytest.mark.asyncio
    async def test_inactive_plan(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        await factory.plan("GOLD", status=int(PlanStatus.INACTIVE))

        with pytest.raises(SyncError) as exc_info:
            await SubscriptionOrchestrator(session, gateway, settings).create(subscribe(card.culqi_card_id))

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert gateway.request.await_count == 0

    @pytest.mark.asyncio
    async def test_existing_active_subscription(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        plan = await factory.plan("GOLD")
        await factory.subscription(customer, card, plan, status=int(SubscriptionStatus.ACTIVE))

        with pytest.raises(SyncError) as exc_info:
            await SubscriptionOrchestrator(session, gateway, settings).create(subscribe(card.culqi_card_id))

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert gateway.request.await_count == 0


class TestCreate:
    @pytest.mark.asyncio
    async def test_stores_remote_reported_status(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        plan = await factory.plan("GOLD")
        gateway.request.return_value = ok(
            {"id": "sxn_test_remote01", "status": int(SubscriptionStatus.TRIAL), "created_at": 1_772_000_000},
            status=201,
        )

        view = await SubscriptionOrchestrator(session, gateway, settings).create(subscribe(card.culqi_card_id, "gold"))

        assert view.status == int(SubscriptionStatus.TRIAL)
        assert view.status_text == "Trial"
        assert view.plan.code == "GOLD"
        assert view.card.culqi_card_id == card.culqi_card_id
        body = gateway.request.await_args.kwargs["body"]
        assert body == {"card_id": card.culqi_card_id, "plan_id": plan.culqi_plan_id, "tyc": True, "metadata": {}}

    @pytest.mark.asyncio
    async def test_active_create_recomputes_plan_counter(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        plan = await factory.plan("GOLD")
        gateway.request.return_value = ok({"id": "sxn_test_remote01", "status": 3}, status=201)

        await SubscriptionOrchestrator(session, gateway, settings).create(subscribe(card.culqi_card_id))

        assert plan.total_subscriptions == 1

    @pytest.mark.asyncio
    async def test_held_lock_rejects_without_gateway_call(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        await factory.plan("GOLD")
        redis_client = fake_redis(acquired=False)

        with pytest.raises(SyncError) as exc_info:
            await SubscriptionOrchestrator(session, gateway, settings, redis_client=redis_client).create(
                subscribe(card.culqi_card_id)
            )

        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert gateway.request.await_count == 0
        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_released_after_create(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        plan = await factory.plan("GOLD")
        redis_client = fake_redis(acquired=True)
        gateway.request.return_value = ok({"id": "sxn_test_remote01", "status": 1}, status=201)

        await SubscriptionOrchestrator(session, gateway, settings, redis_client=redis_client).create(
            subscribe(card.culqi_card_id)
        )

        redis_client.delete.assert_awaited_once_with(f"{LOCK_PREFIX}user-1:{plan.id}")

    @pytest.mark.asyncio
    async def test_lock_released_when_gateway_fails(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        await factory.plan("GOLD")
        redis_client = fake_redis(acquired=True)
        gateway.request.side_effect = GatewayError(ErrorKind.GATEWAY_UNAVAILABLE, "down")

        with pytest.raises(GatewayError):
            await SubscriptionOrchestrator(session, gateway, settings, redis_client=redis_client).create(
                subscribe(card.culqi_card_id)
            )

        redis_client.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back_to_unique_index(self, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        await factory.plan("GOLD")
        redis_client = fake_redis(acquired=True)
        redis_client.pipeline.return_value.__aenter__.return_value.execute.side_effect = RedisConnectionError(
            "Error 111 connecting to 127.0.0.1:1"
        )
        redis_client.delete.side_effect = RedisConnectionError("Error 111 connecting to 127.0.0.1:1")
        gateway.request.return_value = ok({"id": "sxn_test_remote01", "status": 1}, status=201)

        view = await SubscriptionOrchestrator(session, gateway, settings, redis_client=redis_client).create(
            subscribe(card.culqi_card_id)
        )

        assert view.culqi_subscription_id == "sxn_test_remote01"
        assert gateway.request.await_count == 1


class TestEligibility:
    @pytest.mark.parametrize(
        "status, is_active",
        [(SubscriptionStatus.CANCELLED, False), (SubscriptionStatus.FINISHED, True), (SubscriptionStatus.FINISHED, False)],
    )
    @pytest.mark.asyncio
    async def test_closed_subscriptions_reject_update_and_cancel(
        self, session, gateway, settings, factory, wallet, status, is_active
    ):
        customer, card = wallet
        plan = await factory.plan("GOLD")
        subscription = await factory.subscription(customer, card, plan, status=int(status), is_active=is_active)
        orchestrator = SubscriptionOrchestrator(session, gateway, settings)

        with pytest.raises(SyncError) as cancel_error:
            await orchestrator.cancel(subscription.culqi_subscription_id)
        with pytest.raises(SyncError) as update_error:
            await orchestrator.update(subscription.culqi_subscription_id, SubscriptionUpdate(metadata={"a": "b"}))

        assert cancel_error.value.kind is ErrorKind.INVALID_REQUEST
        assert update_error.value.kind is ErrorKind.INVALID_REQUEST
        assert gateway.request.await_count == 0

    @pytest.mark.parametrize(
        "status",
        [SubscriptionStatus.CREATED, SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.QUEUED],
    )
    @pytest.mark.asyncio
    async def test_open_subscriptions_accept_cancel(self, session, gateway, settings, factory, wallet, status):
        customer, card = wallet
        plan = await factory.plan("GOLD", total_subscriptions=1)
        subscription = await factory.subscription(customer, card, plan, status=int(status))
        gateway.request.return_value = ok({"merchant_message": "Subscription cancelled"})

        result = await SubscriptionOrchestrator(session, gateway, settings).cancel(subscription.culqi_subscription_id)

        assert result.deleted is True
        assert subscription.is_active is False
        assert subscription.status == int(SubscriptionStatus.CANCELLED)
        assert subscription.cancellation_date is not None
        assert plan.total_subscriptions == 0
        assert gateway.request.await_args.kwargs["method"] == "DELETE"

    @pytest.mark.asyncio
    async def test_cancel_survives_counter_failure(self, session, gateway, settings, factory, wallet, monkeypatch):
        customer, card = wallet
        plan = await factory.plan("GOLD")
        subscription = await factory.subscription(customer, card, plan)
        gateway.request.return_value = ok({})
        orchestrator = SubscriptionOrchestrator(session, gateway, settings)
        monkeypatch.setattr(orchestrator.plans, "recompute_subscription_count", AsyncMock(return_value=None))

        result = await orchestrator.cancel(subscription.culqi_subscription_id)

        assert result.deleted is True
        orchestrator.plans.recompute_subscription_count.assert_awaited_once_with(plan.id)


class TestUpdate:
    @pytest.mark.asyncio
    async def test_swap_to_owned_card(self, session, gateway, settings, factory, wallet):
        customer, card = wallet
        replacement = await factory.card(customer)
        plan = await factory.plan("GOLD")
        subscription = await factory.subscription(customer, card, plan)
        gateway.request.return_value = ok({"id": subscription.culqi_subscription_id})

        view = await SubscriptionOrchestrator(session, gateway, settings).update(
            subscription.culqi_subscription_id, SubscriptionUpdate(card_id=replacement.culqi_card_id)
        )

        assert view.card.culqi_card_id == replacement.culqi_card_id
        assert subscription.card_id == replacement.id
        assert gateway.request.await_args.kwargs["body"] == {"card_id": replacement.culqi_card_id}

    @pytest.mark.asyncio
    async def test_swap_to_foreign_card_is_not_found(self, session, gateway, settings, factory, wallet):
        customer, card = wallet
        stranger = await factory.customer("user-2")
        foreign_card = await factory.card(stranger)
        plan = await factory.plan("GOLD")
        subscription = await factory.subscription(customer, card, plan)

        with pytest.raises(SyncError) as exc_info:
            await SubscriptionOrchestrator(session, gateway, settings).update(
                subscription.culqi_subscription_id, SubscriptionUpdate(card_id=foreign_card.culqi_card_id)
            )

        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert gateway.request.await_count == 0


class TestListReconciliation:
    @pytest.mark.asyncio
    async def test_only_first_ten_rows_are_reconciled(self, session, gateway, settings, factory, wallet):
        customer, card = wallet
        for index in range(15):
            plan = await factory.plan(f"PLAN{index:02d}")
            await factory.subscription(customer, card, plan)
        gateway.request.return_value = ok({"status": int(SubscriptionStatus.ACTIVE)})

        page = await SubscriptionOrchestrator(session, gateway, settings).list()

        assert gateway.request.await_count == 10
        assert page.total == 15
        assert page.reconciled_through == 10
        assert [item.synced for item in page.items] == [True] * 10 + [False] * 5

    @pytest.mark.asyncio
    async def test_failing_row_falls_back_to_cached_view(self, session, gateway, settings, factory, wallet):
        customer, card = wallet
        subscriptions = []
        for index in range(3):
            plan = await factory.plan(f"PLAN{index:02d}")
            subscriptions.append(await factory.subscription(customer, card, plan, current_period=1))
        broken = subscriptions[1].culqi_subscription_id

        async def respond(endpoint, **kwargs):
            if endpoint.endswith(broken):
                raise GatewayError(ErrorKind.GATEWAY_UNAVAILABLE, "down")
            return ok({"status": 3, "current_period": 2})

        gateway.request.side_effect = respond

        page = await SubscriptionOrchestrator(session, gateway, settings).list()

        by_id = {item.culqi_subscription_id: item for item in page.items}
        assert by_id[broken].synced is False
        assert by_id[broken].current_period == 1
        assert all(item.synced and item.current_period == 2 for key, item in by_id.items() if key != broken)

    @pytest.mark.asyncio
    async def test_rejected_snapshot_only_reverts_its_own_row(self, session, gateway, settings, factory, wallet):
        customer, card = wallet
        subscriptions = []
        for index in range(3):
            plan = await factory.plan(f"PLAN{index:02d}")
            subscriptions.append(await factory.subscription(customer, card, plan, current_period=1))
        invalid = subscriptions[1].culqi_subscription_id

        async def respond(endpoint, **kwargs):
            if endpoint.endswith(invalid):
                return ok({"status": 7})
            return ok({"status": 3, "current_period": 2})

        gateway.request.side_effect = respond

        page = await SubscriptionOrchestrator(session, gateway, settings).list()

        assert page.reconciled_through == 3
        by_id = {item.culqi_subscription_id: item for item in page.items}
        assert by_id[invalid].synced is False
        assert by_id[invalid].status == int(SubscriptionStatus.ACTIVE)
        assert by_id[invalid].current_period == 1
        assert all(item.synced and item.current_period == 2 for key, item in by_id.items() if key != invalid)

        stored = await session.scalar(
            select(Subscription.status).where(Subscription.culqi_subscription_id == invalid)
        )
        assert stored == int(SubscriptionStatus.ACTIVE)

    @pytest.mark.asyncio
    async def test_cancelled_filter_includes_inactive_rows(self, session, gateway, settings, factory, wallet):
        customer, card = wallet
        plan = await factory.plan("GOLD")
        await factory.subscription(customer, card, plan, status=int(SubscriptionStatus.CANCELLED), is_active=False)
        gateway.request.return_value = ok({})

        page = await SubscriptionOrchestrator(session, gateway, settings).list(
            SubscriptionFilters(status=int(SubscriptionStatus.CANCELLED))
        )

        assert page.total == 1

    @pytest.mark.asyncio
    async def test_list_for_user_serves_mirror_only(self, session, gateway, settings, factory, wallet):
        customer, card = wallet
        plan = await factory.plan("GOLD")
        await factory.subscription(customer, card, plan)

        page = await SubscriptionOrchestrator(session, gateway, settings).list_for_user("user-1")

        assert page.total == 1
        assert page.reconciled_through == 0
        gateway.request.assert_not_awaited()


class TestSummary:
    @pytest.mark.asyncio
    async def test_summary_reads_only_the_mirror(self, session, gateway, settings, factory, wallet):
        now = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
        now_ts = int(now.timestamp())
        this_month = int(datetime(2026, 3, 2, tzinfo=timezone.utc).timestamp())
        last_month = int(datetime(2026, 2, 20, tzinfo=timezone.utc).timestamp())
        customer, card = wallet
        gold = await factory.plan("GOLD", amount=Decimal("49.90"))
        silver = await factory.plan("SILVER", amount=Decimal("19.90"))
        bronze = await factory.plan("BRONZE", amount=Decimal("9.90"))
        await factory.subscription(
            customer, card, gold,
            culqi_creation_date=this_month,
            next_billing_date=now_ts + int(timedelta(days=5).total_seconds()),
        )
        await factory.subscription(
            customer, card, silver,
            culqi_creation_date=last_month,
            next_billing_date=now_ts + int(timedelta(days=40).total_seconds()),
        )
        await factory.subscription(customer, card, bronze, status=int(SubscriptionStatus.TRIAL))
        await factory.subscription(
            customer, card, bronze, status=int(SubscriptionStatus.CANCELLED), is_active=False
        )

        summary = await SubscriptionOrchestrator(session, gateway, settings).summary(now)

        assert summary.total == 3
        assert summary.active == 2
        assert summary.trial == 1
        assert summary.cancelled == 1
        assert summary.revenue_this_month == Decimal("49.90")
        assert [billing.plan_name for billing in summary.next_billings] == ["Plan GOLD"]
        assert summary.as_of == now_ts
        assert summary.source == "local_mirror"
        gateway.request.assert_not_awaited()

    def test_month_bounds_wraps_december(self):
        start, end = month_bounds(datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc))

        assert start == int(datetime(2026, 12, 1, tzinfo=timezone.utc).timestamp())
        assert end == int(datetime(2027, 1, 1, tzinfo=timezone.utc).timestamp())


class TestTrialWindow:
    @pytest.mark.asyncio
    async def test_trial_membership_ignores_status(self, factory, wallet):
        customer, card = wallet
        plan = await factory.plan("GOLD")
        subscription = await factory.subscription(
            customer, card, plan, status=int(SubscriptionStatus.ACTIVE), trial_start=1_000, trial_end=2_000
        )

        assert subscription.in_trial_period(1_500) is True
        assert subscription.in_trial_period(2_001) is False
        assert subscription.in_trial_period(999) is False
