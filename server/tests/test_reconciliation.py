"""
Reconciliation writes only what differs; a repeated snapshot writes nothing.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy import event

from gateway_sync.models import SubscriptionStatus
from gateway_sync.services.base import merge_metadata, reconcile_fields
from gateway_sync.services.subscription_service import SubscriptionOrchestrator

from conftest import ok


class TestReconcileFields:
    def test_returns_only_changed_fields(self):
        record = SimpleNamespace(status=1, current_period=1, next_billing_date=None)

        changed = reconcile_fields(record, {"status": 3, "current_period": 1, "next_billing_date": 1_800_000_000})

        assert changed == ["status", "next_billing_date"]
        assert record.status == 3

    def test_same_snapshot_twice_changes_nothing_second_time(self):
        record = SimpleNamespace(status=1, current_period=1)
        snapshot = {"status": 3, "current_period": 2}

        assert reconcile_fields(record, snapshot) == ["status", "current_period"]
        assert reconcile_fields(record, snapshot) == []

    def test_merge_metadata_returns_new_dict(self):
        current = {"a": "1"}

        merged = merge_metadata(current, {"b": "2"})

        assert merged == {"a": "1", "b": "2"}
        assert merged is not current
        assert merge_metadata(current, None) is current


class TestMirrorWrites:
    @pytest.mark.asyncio
    async def test_second_identical_snapshot_issues_no_update(self, engine, session, gateway, settings, factory):
        customer = await factory.customer("user-1")
        card = await factory.card(customer)
        plan = await factory.plan("GOLD")
        subscription = await factory.subscription(customer, card, plan, status=int(SubscriptionStatus.CREATED))
        gateway.request.return_value = ok(
            {
                "id": subscription.culqi_subscription_id,
                "status": int(SubscriptionStatus.ACTIVE),
                "current_period": 2,
                "next_billing_date": 1_800_000_000,
                "trial_start": 1_700_000_000,
                "trial_end": 1_700_600_000,
            }
        )
        updates = []

        def record_updates(conn, cursor, statement, parameters, context, executemany):
            if statement.lstrip().upper().startswith("UPDATE"):
                updates.append(statement)

        event.listen(engine.sync_engine, "before_cursor_execute", record_updates)
        orchestrator = SubscriptionOrchestrator(session, gateway, settings)
        try:
            first = await orchestrator.get(subscription.culqi_subscription_id)
            writes_after_first = len(updates)
            second = await orchestrator.get(subscription.culqi_subscription_id)
        finally:
            event.remove(engine.sync_engine, "before_cursor_execute", record_updates)

        assert writes_after_first == 1
        assert len(updates) == writes_after_first
        assert first.status == second.status == int(SubscriptionStatus.ACTIVE)
        assert second.next_billing_date == 1_800_000_000
