#!/usr/bin/env python3
"""
资产拆解服务 - 数据库初始化脚本
用于创建数据库表，可选写入一台演示用资产（含部件树和依附记录）

用法:
    python init_database.py            # 只建表
    python init_database.py --demo     # 建表并写入演示数据
"""

import argparse
import sys

from sqlalchemy.exc import SQLAlchemyError

from app.db.session import engine, SessionLocal, Base
from app import models  # noqa: F401  导入所有模型
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

DEMO_TENANT_ID = 1


def create_tables():
    """创建数据库表"""
    print("[INFO] 正在创建数据库表...")
    Base.metadata.create_all(bind=engine)
    print("[SUCCESS] 数据库表创建完成")


def init_demo_asset():
    """写入演示资产：灌装线1号机 -> 泵组(电机、叶轮) / 控制柜"""
    print("[INFO] 正在初始化演示资产数据...")

    db = SessionLocal()
    try:
        existing = db.query(Asset).filter(
            Asset.tenant_id == DEMO_TENANT_ID, Asset.asset_code == "DEMO-LINE-01"
        ).first()
        if existing:
            print(f"[SKIP] 演示资产已存在 (id={existing.id})，跳过初始化")
            return

        asset = Asset(
            tenant_id=DEMO_TENANT_ID,
            name="灌装线1号机",
            asset_code="DEMO-LINE-01",
            asset_type="PRODUCTION_LINE",
            area_id=1,
            sector_id=1,
            criticality_production=8,
            criticality_safety=5,
        )
        db.add(asset)
        db.flush()

        pump = Component(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, name="泵组", code="PUMP-01",
                         component_type="PUMP", criticality=7, is_safety_critical=True)
        cabinet = Component(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, name="控制柜", code="CAB-01",
                            component_type="CABINET", criticality=5)
        db.add_all([pump, cabinet])
        db.flush()

        motor = Component(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, parent_id=pump.id,
                          name="电机", code="MOTOR-01", component_type="MOTOR")
        impeller = Component(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, parent_id=pump.id,
                             name="叶轮", code="IMP-01", component_type="IMPELLER")
        db.add_all([motor, impeller])
        db.flush()

        failure = FailureOccurrence(tenant_id=DEMO_TENANT_ID, asset_id=asset.id,
                                    component_id=motor.id, title="电机过热")
        db.add(failure)
        db.flush()

        db.add_all([
            WorkOrder(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, component_id=pump.id,
                      title="泵组季度保养", status="PENDING"),
            WorkOrder(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, title="整线年检", status="COMPLETED"),
            SolutionApplied(failure_occurrence_id=failure.id, final_component_id=motor.id,
                            description="更换轴承"),
            HistoryEvent(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, component_id=motor.id,
                         item_id=motor.id, item_type="component", event_type="FAILURE_REPORTED",
                         description="电机过热报修", actor="system"),
            LotInstallation(tenant_id=DEMO_TENANT_ID, lot_id=1001, asset_id=asset.id,
                            component_id=impeller.id, quantity=1),
            MaintenanceChecklist(tenant_id=DEMO_TENANT_ID, asset_id=asset.id,
                                 title="整线周检", frequency_days=7),
            Document(tenant_id=DEMO_TENANT_ID, asset_id=asset.id, component_id=pump.id,
                     entity_type="component", entity_id=str(pump.id), name="泵组说明书",
                     file_name="pump_manual.pdf", url="/files/pump_manual.pdf", doc_type="manual"),
        ])
        db.commit()
        print(f"[SUCCESS] 演示资产初始化完成 (asset_id={asset.id})")

    except SQLAlchemyError as e:
        print(f"[ERROR] 演示资产初始化失败: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description="资产拆解服务数据库初始化")
    parser.add_argument("--demo", action="store_true", help="写入演示资产数据")
    args = parser.parse_args()

    print("=" * 60)
    print("开始初始化资产拆解服务数据库...")
    print("=" * 60)

    try:
        create_tables()
        if args.demo:
            init_demo_asset()

        print("=" * 60)
        print("[SUCCESS] 数据库初始化完成！")
        print("\n启动应用:")
        print("  uvicorn app.main:app --reload")
        print("\nAPI文档:")
        print("  http://localhost:8000/docs")
        print("=" * 60)

    except SQLAlchemyError as e:
        print(f"[ERROR] 数据库初始化失败: {e}")
        return 1

    return 0


if __name__ == "__main__":
    exit_code = main()
    sys.exit(exit_code)
