"""
SQL-backed asset directory and work-order service
"""

import logging
from datetime import datetime
from functools import wraps
from typing import List

from sqlalchemy import func
from sqlalchemy.exc import OperationalError

from src.collaborators.interfaces import (
    AssetDirectory, AssetInfo, WorkOrderRequest, WorkOrderService
)
from src.database.database_manager import DatabaseManager
from src.database.models import Asset, WorkOrder
from src.utils.exceptions import NotFoundError, TransientCollaboratorError

logger = logging.getLogger(__name__)


def collaborator_call(name: str):
    """Surface connectivity failures as TransientCollaboratorError

    Args:
        name: Collaborator name used in the error

    Returns:
        Decorator function
    """
    def decorator(func_):
        @wraps(func_)
        def wrapper(*args, **kwargs):
            try:
                return func_(*args, **kwargs)
            except OperationalError as e:
                logger.error(f"{name} call {func_.__name__} failed: {e}")
                raise TransientCollaboratorError(name, str(e.orig or e)) from e
        return wrapper
    return decorator


def asset_info(asset: Asset) -> AssetInfo:
    return AssetInfo(
        id=asset.id,
        organization_id=asset.organization_id,
        name=asset.name,
        asset_type=asset.asset_type,
        criticality=asset.criticality,
        installed_date=asset.installed_date,
        purchase_date=asset.purchase_date,
        created_at=asset.created_at,
        useful_life_years=asset.useful_life_years,
        replacement_cost=asset.replacement_cost,
        last_maintenance_date=asset.last_maintenance_date,
        total_maintenance_count=asset.total_maintenance_count or 0,
        current_meter_readings=dict(asset.current_meter_readings or {})
    )


class SqlAssetDirectory(AssetDirectory):
    """Asset directory over the assets table"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @collaborator_call('asset directory')
    def get_asset(self, organization_id: str, asset_id: str) -> AssetInfo:
        with self.db.get_session() as session:
            asset = session.query(Asset).filter(
                Asset.id == asset_id,
                Asset.organization_id == organization_id
            ).first()
            if asset is None:
                raise NotFoundError('Asset', asset_id)
            return asset_info(asset)

    @collaborator_call('asset directory')
    def list_assets_by_type(self, organization_id: str, asset_type: str) -> List[AssetInfo]:
        with self.db.get_session() as session:
            assets = session.query(Asset).filter(
                Asset.organization_id == organization_id,
                Asset.asset_type == asset_type
            ).all()
            return [asset_info(a) for a in assets]

    def add_asset(self, organization_id: str, name: str, **fields) -> AssetInfo:
        """Register an asset (used by seeding and tests)"""
        with self.db.get_session() as session:
            asset = Asset(organization_id=organization_id, name=name, **fields)
            session.add(asset)
            session.flush()
            return asset_info(asset)


class SqlWorkOrderService(WorkOrderService):
    """Work-order service writing to the work_orders table"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @collaborator_call('work-order service')
    def create(self, request: WorkOrderRequest) -> str:
        with self.db.get_session() as session:
            count = session.query(func.count(WorkOrder.id)).filter(
                WorkOrder.organization_id == request.organization_id
            ).scalar() or 0

            work_order = WorkOrder(
                organization_id=request.organization_id,
                wo_number=f"PM-WO-{count + 1:06d}",
                title=request.title,
                description=request.description,
                wo_type=request.wo_type,
                priority=request.priority,
                asset_id=request.asset_id,
                assigned_to_id=request.assigned_to_id,
                scheduled_date=request.scheduled_date,
                due_date=request.due_date,
                checklist=list(request.checklist or []),
                estimated_hours=request.estimated_hours,
                estimated_cost=request.estimated_cost,
                source_kind=request.source_kind,
                source_id=request.source_id,
                created_by_id=request.created_by_id
            )
            session.add(work_order)
            session.flush()
            logger.info(f"Created work order {work_order.wo_number}: {work_order.title}")
            return work_order.id

    @collaborator_call('work-order service')
    def recent_work_order_dates(self, organization_id: str, asset_id: str,
                                limit: int = 20) -> List[datetime]:
        with self.db.get_session() as session:
            rows = session.query(WorkOrder.created_at).filter(
                WorkOrder.organization_id == organization_id,
                WorkOrder.asset_id == asset_id
            ).order_by(WorkOrder.created_at.desc()).limit(limit).all()
            return [row[0] for row in rows]

    def get(self, work_order_id: str) -> WorkOrder:
        with self.db.get_session() as session:
            work_order = session.get(WorkOrder, work_order_id)
            if work_order is None:
                raise NotFoundError('WorkOrder', work_order_id)
            return work_order

    def list_for_asset(self, organization_id: str, asset_id: str) -> List[WorkOrder]:
        with self.db.get_session() as session:
            return session.query(WorkOrder).filter(
                WorkOrder.organization_id == organization_id,
                WorkOrder.asset_id == asset_id
            ).order_by(WorkOrder.created_at).all()
