import json
import os
from types import SimpleNamespace

# 测试使用 SQLite，导入应用之前设置，避免连接 MySQL
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.db.session import Base, build_engine, get_session_factory
from app.main import app
from app.models import (
    Asset,
    Component,
    Document,
    FailureOccurrence,
    HistoryEvent,
    LotInstallation,
    MaintenanceChecklist,
    SolutionApplied,
    WorkOrder,
)
from app.services.disassemble_service import DisassembleService
from app.services.lock_coordinator import LockCoordinator

TENANT_ID = 1
OTHER_TENANT_ID = 2
TEMPLATE_ENTITY_TYPE = "PREVENTIVE_MAINTENANCE_TEMPLATE"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'disassembly.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def lock_coordinator():
    return LockCoordinator(timeout=0.5, poll_interval=0.05)


@pytest.fixture
def service(session_factory, lock_coordinator):
    return DisassembleService(session_factory, lock_coordinator=lock_coordinator)


@pytest.fixture
def client(session_factory):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _add(db, obj):
    db.add(obj)
    db.flush()
    return obj.id


@pytest.fixture
def machine(db):
    """资产 M：C1(C2, C3(C5)) 与 C4 两棵部件树，以及各类依附记录

    另有同租户资产 Other（部件 X）和其他租户资产 Foreign。
    """
    ids = SimpleNamespace()
    ids.asset = _add(db, Asset(
        tenant_id=TENANT_ID, name="Line M", asset_code="M-01",
        area_id=3, sector_id=4, plant_zone_id=5,
        criticality_production=9, criticality_safety=6,
    ))
    ids.c1 = _add(db, Component(
        tenant_id=TENANT_ID, asset_id=ids.asset, name="Pump Unit", code="C1-CODE",
        component_type="PUMP", description="main pump", technical_info="2.2kW",
        criticality=7, is_safety_critical=True,
    ))
    ids.c2 = _add(db, Component(tenant_id=TENANT_ID, asset_id=ids.asset, parent_id=ids.c1, name="Motor", code="C2-CODE"))
    ids.c3 = _add(db, Component(tenant_id=TENANT_ID, asset_id=ids.asset, parent_id=ids.c1, name="Impeller", code="C3-CODE"))
    ids.c5 = _add(db, Component(tenant_id=TENANT_ID, asset_id=ids.asset, parent_id=ids.c3, name="Blade", code="C5-CODE"))
    ids.c4 = _add(db, Component(tenant_id=TENANT_ID, asset_id=ids.asset, name="Control Cabinet", code="C4-CODE"))

    ids.wo_c1 = _add(db, WorkOrder(tenant_id=TENANT_ID, asset_id=ids.asset, component_id=ids.c1, title="pump service", status="PENDING"))
    ids.wo_c2 = _add(db, WorkOrder(tenant_id=TENANT_ID, asset_id=ids.asset, component_id=ids.c2, title="motor repair", status="IN_PROGRESS"))
    ids.wo_asset = _add(db, WorkOrder(tenant_id=TENANT_ID, asset_id=ids.asset, title="yearly inspection", status="COMPLETED"))

    ids.failure_c2 = _add(db, FailureOccurrence(tenant_id=TENANT_ID, asset_id=ids.asset, component_id=ids.c2, title="motor overheat"))
    ids.failure_asset = _add(db, FailureOccurrence(tenant_id=TENANT_ID, asset_id=ids.asset, title="line stop"))
    ids.solution_c2 = _add(db, SolutionApplied(failure_occurrence_id=ids.failure_c2, final_component_id=ids.c2, description="replace bearing"))
    ids.solution_asset = _add(db, SolutionApplied(
        failure_occurrence_id=ids.failure_asset, final_component_id=ids.c4,
        final_subcomponent_id=ids.c2, description="reset motor",
    ))

    ids.history_c3 = _add(db, HistoryEvent(
        tenant_id=TENANT_ID, asset_id=ids.asset, component_id=ids.c3, item_id=ids.c3,
        item_type="component", event_type="COMPONENT_REPLACED", actor="tester",
    ))
    ids.history_asset = _add(db, HistoryEvent(
        tenant_id=TENANT_ID, asset_id=ids.asset, item_id=ids.asset,
        item_type="asset", event_type="ASSET_CREATED", actor="tester",
    ))

    ids.lot_c5 = _add(db, LotInstallation(tenant_id=TENANT_ID, lot_id=501, asset_id=ids.asset, component_id=ids.c5))
    ids.lot_asset = _add(db, LotInstallation(tenant_id=TENANT_ID, lot_id=502, asset_id=ids.asset))

    ids.checklist_c2 = _add(db, MaintenanceChecklist(tenant_id=TENANT_ID, asset_id=ids.asset, component_id=ids.c2, title="motor checklist"))
    ids.checklist_asset = _add(db, MaintenanceChecklist(tenant_id=TENANT_ID, asset_id=ids.asset, title="line checklist"))

    ids.doc_c2 = _add(db, Document(
        tenant_id=TENANT_ID, asset_id=ids.asset, component_id=ids.c2, entity_type="component",
        entity_id=str(ids.c2), name="motor manual", file_name="motor.pdf", url="/files/motor.pdf",
    ))
    ids.doc_c3 = _add(db, Document(
        tenant_id=TENANT_ID, asset_id=ids.asset, component_id=ids.c3, entity_type="component",
        entity_id=str(ids.c3), name="impeller drawing", file_name="impeller.dwg", url="/files/impeller.dwg",
    ))
    ids.doc_asset = _add(db, Document(
        tenant_id=TENANT_ID, asset_id=ids.asset, entity_type="asset",
        entity_id=str(ids.asset), name="line layout", file_name="layout.pdf", url="/files/layout.pdf",
    ))
    ids.template = _add(db, Document(
        tenant_id=TENANT_ID, entity_type=TEMPLATE_ENTITY_TYPE, entity_id="tpl-1", name="weekly template",
        url=json.dumps({"assetId": ids.asset, "assetName": "Line M", "tasks": ["lubricate"]}),
    ))
    ids.broken_template = _add(db, Document(
        tenant_id=TENANT_ID, entity_type=TEMPLATE_ENTITY_TYPE, entity_id="tpl-2", name="broken template",
        url=f'{{"assetId": {ids.asset}, broken',
    ))

    ids.other_asset = _add(db, Asset(tenant_id=TENANT_ID, name="Other", asset_code="OTHER-01"))
    ids.other_component = _add(db, Component(tenant_id=TENANT_ID, asset_id=ids.other_asset, name="X"))
    ids.foreign_asset = _add(db, Asset(tenant_id=OTHER_TENANT_ID, name="Foreign"))

    db.commit()
    return ids
