import json
import threading
from types import SimpleNamespace

import pytest

from app.constants.operation_types import OperationResult, OperationType
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from app.models import (
    Asset,
    Component,
    DisassembleOperation,
    Document,
    FailureOccurrence,
    HistoryEvent,
    LotInstallation,
    MaintenanceChecklist,
    SolutionApplied,
    WorkOrder,
)
from app.schemas.disassemble_schemas import DisassembleRequest
from app.services import component_actions, disassemble_service
from app.services.disassemble_service import DisassembleService
from app.services.idempotency_ledger import IdempotencyLedger
from app.services.lock_coordinator import LockCoordinator

TENANT = 1


def make_request(token, actions, **options):
    return DisassembleRequest.model_validate({
        "operationToken": token,
        "componentActions": actions,
        **options,
    })


def promote_c1(machine, token="op-promote", **options):
    return make_request(
        token,
        [{"componentId": machine.c1, "action": "promote", "newAssetName": "Standalone Pump"}],
        **options,
    )


def test_promote_with_decommission_scenario(service, db, machine):
    result = service.disassemble(
        machine.asset, promote_c1(machine, disposeOriginal="decommission", migrateHistory="move"), TENANT, "alice"
    )
    db.expire_all()

    assert len(result.promoted_assets) == 1
    pump_id = result.promoted_assets[0].id
    assert result.promoted_assets[0].name == "Standalone Pump"
    assert result.promoted_assets[0].from_component == "Pump Unit"
    assert result.promoted_assets[0].subtree_size == 4

    for cid in (machine.c1, machine.c2, machine.c3, machine.c5):
        assert db.get(Component, cid).asset_id == pump_id
    assert db.get(Component, machine.c1).parent_id is None
    assert db.get(WorkOrder, machine.wo_c1).asset_id == pump_id
    assert db.get(WorkOrder, machine.wo_c2).asset_id == pump_id

    original = db.get(Asset, machine.asset)
    assert original.status == "DECOMMISSIONED"
    assert db.query(HistoryEvent).filter(
        HistoryEvent.asset_id == machine.asset, HistoryEvent.event_type == "ASSET_DISASSEMBLED"
    ).count() == 1
    assert db.query(HistoryEvent).filter(
        HistoryEvent.asset_id == pump_id, HistoryEvent.event_type == "ASSET_CREATED_FROM_DISASSEMBLE"
    ).count() == 1

    assert result.migrated_work_orders == 2
    assert result.migrated_failures == 1
    assert result.migrated_documents == 2
    assert result.migrated_lot_installations == 1
    assert result.migrated_checklists == 2
    assert result.migrated_preventive_templates == 1
    assert result.original_asset_deleted is False
    assert result.cached is False
    assert result.idempotency_degraded is False


def test_promote_conserves_tree(service, db, machine):
    before = {
        c.id: c.parent_id
        for c in db.query(Component).filter(Component.id.in_([machine.c1, machine.c2, machine.c3, machine.c5]))
    }

    service.disassemble(machine.asset, promote_c1(machine), TENANT, "alice")
    db.expire_all()

    after = {
        c.id: c.parent_id
        for c in db.query(Component).filter(Component.id.in_(list(before)))
    }
    assert set(after) == set(before)
    # 只有根与其直接子节点的父引用被清空，更深层的父子关系不变
    assert after[machine.c5] == before[machine.c5]


def test_asset_level_records_follow_first_promoted_asset(service, db, machine):
    result = service.disassemble(
        machine.asset,
        make_request("op-two", [
            {"componentId": machine.c4, "action": "promote"},
            {"componentId": machine.c1, "action": "promote"},
        ]),
        TENANT,
        "alice",
    )
    db.expire_all()

    first_id = result.promoted_assets[0].id
    assert result.promoted_assets[0].name == "Control Cabinet"
    assert db.get(MaintenanceChecklist, machine.checklist_asset).asset_id == first_id

    template = json.loads(db.get(Document, machine.template).url)
    assert template["assetId"] == first_id
    assert template["assetName"] == "Control Cabinet"
    assert template["tasks"] == ["lubricate"]
    assert "broken" in db.get(Document, machine.broken_template).url


def test_delete_component_scenario(service, db, machine):
    result = service.disassemble(
        machine.asset,
        make_request("op-delete", [{"componentId": machine.c2, "action": "delete"}]),
        TENANT,
        "alice",
    )
    db.expire_all()

    assert result.deleted_components_count == 1
    assert db.get(Component, machine.c2) is None
    wo = db.get(WorkOrder, machine.wo_c2)
    assert wo.component_id is None
    assert wo.asset_id == machine.asset
    assert db.get(FailureOccurrence, machine.failure_c2) is None

    c1, c3 = db.get(Component, machine.c1), db.get(Component, machine.c3)
    assert (c1.asset_id, c1.parent_id) == (machine.asset, None)
    assert (c3.asset_id, c3.parent_id) == (machine.asset, machine.c1)
    assert db.get(Asset, machine.asset).status == "DECOMMISSIONED"


def _references_to_components(db, component_ids):
    checks = [
        db.query(Component).filter(Component.parent_id.in_(component_ids)).count(),
        db.query(WorkOrder).filter(WorkOrder.component_id.in_(component_ids)).count(),
        db.query(FailureOccurrence).filter(FailureOccurrence.component_id.in_(component_ids)).count(),
        db.query(SolutionApplied).filter(SolutionApplied.final_component_id.in_(component_ids)).count(),
        db.query(SolutionApplied).filter(SolutionApplied.final_subcomponent_id.in_(component_ids)).count(),
        db.query(HistoryEvent).filter(HistoryEvent.component_id.in_(component_ids)).count(),
        db.query(LotInstallation).filter(LotInstallation.component_id.in_(component_ids)).count(),
        db.query(MaintenanceChecklist).filter(MaintenanceChecklist.component_id.in_(component_ids)).count(),
        db.query(Document).filter(Document.component_id.in_(component_ids)).count(),
    ]
    return sum(checks)


def _references_to_asset(db, asset_id):
    models = (Component, WorkOrder, FailureOccurrence, HistoryEvent, LotInstallation, MaintenanceChecklist, Document)
    return sum(db.query(model).filter(model.asset_id == asset_id).count() for model in models)


def test_delete_leaves_no_dangling_references(service, db, machine):
    removed = [machine.c1, machine.c2, machine.c3, machine.c5]

    result = service.disassemble(
        machine.asset,
        make_request("op-delete-tree", [{"componentId": machine.c1, "action": "delete"}]),
        TENANT,
        "alice",
    )
    db.expire_all()

    assert result.deleted_components_count == 4
    assert db.query(Component).filter(Component.id.in_(removed)).count() == 0
    assert _references_to_components(db, removed) == 0


def test_orphan_preserves_internal_structure(service, db, machine):
    result = service.disassemble(
        machine.asset,
        make_request("op-orphan", [{"componentId": machine.c1, "action": "orphan"}]),
        TENANT,
        "alice",
    )
    db.expire_all()

    assert result.orphaned_components_count == 4
    parents = {c.id: c.parent_id for c in db.query(Component).filter(Component.asset_id.is_(None))}
    assert parents == {
        machine.c1: None,
        machine.c2: machine.c1,
        machine.c3: machine.c1,
        machine.c5: machine.c3,
    }


def test_delete_original_asset(service, db, machine):
    result = service.disassemble(
        machine.asset,
        promote_c1(machine, "op-delete-original", disposeOriginal="delete", migrateHistory="keep", migrateDocuments="none"),
        TENANT,
        "alice",
    )
    db.expire_all()

    assert result.original_asset_deleted is True
    assert db.get(Asset, machine.asset) is None
    assert _references_to_asset(db, machine.asset) == 0

    # 未请求动作的 C4 原地孤立
    assert db.get(Component, machine.c4).asset_id is None
    assert result.orphaned_components_count == 1

    assert db.get(FailureOccurrence, machine.failure_asset) is None
    assert db.get(SolutionApplied, machine.solution_asset) is None
    assert db.get(HistoryEvent, machine.history_asset) is None
    assert db.get(Document, machine.doc_asset) is None
    assert db.get(WorkOrder, machine.wo_asset).asset_id is None
    assert db.get(LotInstallation, machine.lot_asset).asset_id is None
    assert db.get(MaintenanceChecklist, machine.checklist_asset).asset_id == result.promoted_assets[0].id

    terminal = db.query(HistoryEvent).filter(
        HistoryEvent.item_id == machine.asset, HistoryEvent.event_type == "ASSET_DISASSEMBLED"
    ).one()
    assert terminal.asset_id is None
    assert terminal.event_metadata["assetName"] == "Line M"
    assert terminal.event_metadata["assetCode"] == "M-01"
    assert terminal.event_metadata["promotedAssets"][0]["name"] == "Standalone Pump"


def test_replay_returns_cached_result_without_reexecuting(service, db, machine):
    request = promote_c1(machine, "op-replay")

    first = service.disassemble(machine.asset, request, TENANT, "alice")
    second = service.disassemble(machine.asset, request, TENANT, "alice")
    db.expire_all()

    assert second.cached is True
    assert second.model_dump(exclude={"cached"}) == first.model_dump(exclude={"cached"})
    assert db.query(Asset).filter(Asset.name == "Standalone Pump").count() == 1
    assert db.query(HistoryEvent).filter(HistoryEvent.event_type == "ASSET_DISASSEMBLED").count() == 1


def test_pending_token_conflicts_without_touching_ledger(service, session_factory, machine):
    IdempotencyLedger(session_factory).begin("op-busy", machine.asset, TENANT, "bob")

    with pytest.raises(ConflictError) as exc_info:
        service.disassemble(machine.asset, promote_c1(machine, "op-busy"), TENANT, "alice")

    assert exc_info.value.operation_token == "op-busy"
    record = service.ledger.get("op-busy")
    assert record.status == "pending"
    assert record.actor == "bob"


@pytest.mark.parametrize("token, actions", [
    ("   ", []),
    ("op-dup", [{"componentId": 1, "action": "delete"}, {"componentId": 1, "action": "orphan"}]),
])
def test_invalid_input_is_rejected_before_ledger(service, machine, token, actions):
    with pytest.raises(InvalidInputError):
        service.disassemble(machine.asset, make_request(token, actions), TENANT, "alice")

    assert service.ledger.get(token.strip() or token) is None


def test_missing_asset_is_not_found_and_recorded_failed(service, machine):
    with pytest.raises(NotFoundError) as exc_info:
        service.disassemble(99999, make_request("op-missing", []), TENANT, "alice")

    assert exc_info.value.operation_token == "op-missing"
    assert service.ledger.get("op-missing").status == "failed"


def test_cross_tenant_is_forbidden(service, db, machine):
    with pytest.raises(ForbiddenError):
        service.disassemble(machine.foreign_asset, make_request("op-foreign", []), TENANT, "alice")

    db.expire_all()
    assert db.get(Asset, machine.foreign_asset).status == "ACTIVE"


def test_components_outside_asset_are_skipped(service, db, machine):
    result = service.disassemble(
        machine.asset,
        make_request("op-skip", [
            {"componentId": machine.other_component, "action": "delete"},
            {"componentId": 424242, "action": "orphan"},
            {"componentId": machine.c1, "action": "promote"},
            {"componentId": machine.c2, "action": "delete"},
        ]),
        TENANT,
        "alice",
    )
    db.expire_all()

    # C2 已随 C1 提升到新资产，不再属于原资产
    assert result.skipped_component_ids == [machine.other_component, 424242, machine.c2]
    assert db.get(Component, machine.other_component) is not None
    assert db.get(Component, machine.c2) is not None


def test_failed_transaction_rolls_back_everything(session_factory, lock_coordinator, db, machine):
    class ExplodingFinalizer:
        template_entity_type = "PREVENTIVE_MAINTENANCE_TEMPLATE"

        def finalize(self, ctx, tally):
            raise RuntimeError("disk full")

    service = DisassembleService(session_factory, lock_coordinator=lock_coordinator, finalizer=ExplodingFinalizer())

    with pytest.raises(RuntimeError):
        service.disassemble(machine.asset, promote_c1(machine, "op-explode"), TENANT, "alice")

    db.expire_all()
    assert db.query(Asset).filter(Asset.name == "Standalone Pump").count() == 0
    assert db.get(Component, machine.c1).asset_id == machine.asset
    record = service.ledger.get("op-explode")
    assert record.status == "failed"
    assert "disk full" in record.error_message


def test_lock_contention_conflicts_then_retry_succeeds(service, lock_coordinator, session_factory, machine):
    holder = session_factory()
    try:
        with lock_coordinator.exclusive_lock(holder, machine.asset):
            with pytest.raises(ConflictError) as exc_info:
                service.disassemble(machine.asset, promote_c1(machine, "op-contended"), TENANT, "alice")
    finally:
        holder.close()

    assert exc_info.value.retryable
    assert service.ledger.get("op-contended").status == "failed"

    result = service.disassemble(machine.asset, promote_c1(machine, "op-contended"), TENANT, "alice")
    assert result.cached is False
    assert service.ledger.get("op-contended").status == "completed"


def test_same_asset_requests_serialize(session_factory, db, machine):
    service = DisassembleService(session_factory, lock_coordinator=LockCoordinator(timeout=10))
    requests = [
        make_request("op-thread-1", [{"componentId": machine.c1, "action": "promote"}]),
        make_request("op-thread-2", [{"componentId": machine.c4, "action": "orphan"}]),
    ]
    results, errors = {}, []
    barrier = threading.Barrier(len(requests))

    def worker(request):
        barrier.wait()
        try:
            results[request.operation_token] = service.disassemble(machine.asset, request, TENANT, "alice")
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(r,)) for r in requests]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(results) == 2
    db.expire_all()
    assert db.get(Component, machine.c4).asset_id is None
    assert db.get(Component, machine.c1).asset_id == results["op-thread-1"].promoted_assets[0].id
    assert db.query(HistoryEvent).filter(
        HistoryEvent.asset_id == machine.asset, HistoryEvent.event_type == "ASSET_DISASSEMBLED"
    ).count() == 2


def test_degraded_ledger_still_executes(service, engine, db, machine):
    DisassembleOperation.__table__.drop(bind=engine)

    result = service.disassemble(machine.asset, promote_c1(machine, "op-degraded"), TENANT, "alice")

    assert result.idempotency_degraded is True
    db.expire_all()
    assert db.get(Asset, machine.asset).status == "DECOMMISSIONED"


def test_preview_summarizes_asset(service, machine):
    preview = service.preview(machine.asset, TENANT)

    assert preview.asset.name == "Line M"
    assert preview.asset.status == "ACTIVE"
    assert [c.id for c in preview.components] == [machine.c1, machine.c4]

    pump = preview.components[0]
    assert pump.subtree_size == 4
    assert pump.children_count == 2
    assert {c.id: c.children_count for c in pump.children} == {machine.c2: 0, machine.c3: 1}
    assert pump.stats.work_orders == 2
    assert pump.stats.active_work_orders == 2
    assert pump.stats.failures == 1
    assert pump.stats.documents == 2
    assert pump.stats.history_events == 1
    assert pump.stats.lot_installations == 1
    assert pump.stats.checklists == 1

    totals = preview.totals
    assert totals.components == 5
    assert totals.work_orders == 3
    assert totals.failures == 2
    assert totals.documents == 3
    assert totals.asset_only_documents == 1
    assert totals.lot_installations == 2
    assert totals.checklists == 2
    assert totals.asset_only_checklists == 1
    assert totals.preventive_templates == 1
    assert preview.warnings.has_active_work_orders is True
    assert preview.warnings.total_active_work_orders == 2


def test_preview_checks_tenant(service, machine):
    with pytest.raises(ForbiddenError):
        service.preview(machine.foreign_asset, TENANT)
    with pytest.raises(NotFoundError):
        service.preview(99999, TENANT)


def test_get_operation(service, machine):
    service.disassemble(machine.asset, promote_c1(machine, "op-status"), TENANT, "alice")

    status = service.get_operation("op-status", TENANT)
    assert status.status == "completed"
    assert status.asset_id == machine.asset
    assert status.actor == "alice"
    assert status.result["promotedAssets"][0]["name"] == "Standalone Pump"
    assert status.completed_at is not None

    with pytest.raises(NotFoundError):
        service.get_operation("op-status", 2)
    with pytest.raises(NotFoundError):
        service.get_operation("unknown", TENANT)


def test_promoted_assets_get_distinct_codes_within_one_request(service, db, machine, monkeypatch):
    # 两个部件编码相同且已被资产 Other 占用，时间戳也相同
    for cid in (machine.c1, machine.c4):
        db.get(Component, cid).code = "OTHER-01"
    db.commit()
    monkeypatch.setattr(component_actions, "time", SimpleNamespace(time=lambda: 1700000000.0))

    result = service.disassemble(
        machine.asset,
        make_request("op-same-code", [
            {"componentId": machine.c1, "action": "promote"},
            {"componentId": machine.c4, "action": "promote"},
        ]),
        TENANT,
        "alice",
    )

    codes = [db.get(Asset, p.id).asset_code for p in result.promoted_assets]
    assert codes == ["OTHER-01-DIS-1700000000000", f"OTHER-01-DIS-1700000000000-{machine.c4}"]
    assert db.query(Asset).filter(Asset.tenant_id == TENANT, Asset.asset_code.like("OTHER-01%")).count() == 3


def test_concurrent_calls_with_same_token_execute_once(session_factory, db, machine):
    service = DisassembleService(session_factory, lock_coordinator=LockCoordinator(timeout=10))
    workers = 4
    barrier = threading.Barrier(workers)
    results, conflicts, errors = [], [], []

    def worker():
        barrier.wait()
        try:
            results.append(service.disassemble(machine.asset, promote_c1(machine, "op-same-token"), TENANT, "alice"))
        except ConflictError as exc:
            conflicts.append(exc)
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(results) + len(conflicts) == workers
    assert [r.cached for r in results].count(False) == 1
    db.expire_all()
    assert db.query(Asset).filter(Asset.origin_asset_id == machine.asset).count() == 1
    assert service.ledger.get("op-same-token").status == "completed"


def test_skipped_component_is_logged_as_skipped(service, machine, monkeypatch):
    calls = []
    monkeypatch.setattr(
        disassemble_service, "log_operation", lambda *args, **kwargs: calls.append(args)
    )

    service.disassemble(
        machine.asset,
        make_request("op-skip-log", [{"componentId": machine.other_component, "action": "orphan"}]),
        TENANT,
        "alice",
    )

    skipped = [c for c in calls if len(c) > 3 and c[3] == OperationResult.SKIPPED]
    assert skipped == [
        (OperationType.COMPONENT_ORPHAN, f"component:{machine.other_component}", "alice", OperationResult.SKIPPED)
    ]
