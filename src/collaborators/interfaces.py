"""
Contracts of the collaborators the engine consumes.

The engine reads assets, reads and appends readings, submits work-order
creation requests and emits notification events. Default SQL and logging
implementations live beside these contracts.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple


@dataclass
class AssetInfo:
    """Read-only asset snapshot"""
    id: str
    organization_id: str
    name: str
    asset_type: Optional[str] = None
    criticality: Optional[int] = None
    installed_date: Optional[datetime] = None
    purchase_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    useful_life_years: Optional[float] = None
    replacement_cost: Optional[float] = None
    last_maintenance_date: Optional[datetime] = None
    total_maintenance_count: int = 0
    current_meter_readings: Dict[str, float] = field(default_factory=dict)


@dataclass
class WorkOrderRequest:
    """Everything the work-order service needs to open one work order"""
    organization_id: str
    title: str
    description: str
    wo_type: str
    priority: str
    asset_id: str
    scheduled_date: datetime
    due_date: datetime
    assigned_to_id: Optional[str] = None
    checklist: List[Dict[str, Any]] = field(default_factory=list)
    estimated_hours: Optional[float] = None
    estimated_cost: Optional[float] = None
    source_kind: Optional[str] = None
    source_id: Optional[str] = None
    created_by_id: Optional[str] = None


class AssetDirectory(ABC):
    """Asset identity, type, criticality, dates and meter snapshot"""

    @abstractmethod
    def get_asset(self, organization_id: str, asset_id: str) -> AssetInfo:
        """Raises NotFoundError when the asset does not exist"""

    @abstractmethod
    def list_assets_by_type(self, organization_id: str, asset_type: str) -> List[AssetInfo]:
        pass


class ReadingStore(ABC):
    """Meter and sensor value streams keyed by asset + kind + timestamp"""

    @abstractmethod
    def record_meter(self, organization_id: str, asset_id: str, meter_kind: str,
                     value: float, recorded_at: datetime,
                     recorded_by_id: Optional[str] = None, source: str = 'manual',
                     notes: Optional[str] = None):
        pass

    @abstractmethod
    def latest_meter_value(self, organization_id: str, asset_id: str,
                           meter_kind: str) -> Optional[float]:
        pass

    @abstractmethod
    def latest_value(self, organization_id: str, asset_id: str, kind: str) -> Optional[float]:
        """Newest value of a kind across sensor and meter streams"""

    @abstractmethod
    def record_sensor(self, organization_id: str, values: Dict[str, Any]):
        pass

    @abstractmethod
    def sensor_history(self, organization_id: str, asset_id: str,
                       sensor_kind: Optional[str] = None,
                       since: Optional[datetime] = None,
                       until: Optional[datetime] = None,
                       limit: Optional[int] = None,
                       newest_first: bool = False) -> list:
        pass

    @abstractmethod
    def sensor_values_for_assets(self, organization_id: str, asset_ids: Sequence[str],
                                 since: datetime) -> List[float]:
        pass

    @abstractmethod
    def assets_with_sensor_data(self, since: datetime,
                                organization_id: Optional[str] = None) -> List[Tuple[str, str]]:
        """(organization_id, asset_id) pairs with readings since the given time"""


class WorkOrderService(ABC):
    """Accepts creation requests; the engine never edits a work order afterwards"""

    @abstractmethod
    def create(self, request: WorkOrderRequest) -> str:
        """Returns the new work order identifier"""

    @abstractmethod
    def recent_work_order_dates(self, organization_id: str, asset_id: str,
                                limit: int = 20) -> List[datetime]:
        pass


class NotificationSink(ABC):
    """Fire-and-forget human-readable events"""

    @abstractmethod
    def notify(self, subject: str, message: str, notification_type: str = 'info',
               payload: Optional[Dict[str, Any]] = None) -> None:
        pass
