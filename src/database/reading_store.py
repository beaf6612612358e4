"""
Reading store over the meter and sensor tables
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.collaborators.interfaces import ReadingStore
from src.collaborators.sql_collaborators import collaborator_call
from src.database.database_manager import DatabaseManager
from src.database.models import MeterReading, SensorReading

logger = logging.getLogger(__name__)


class SqlReadingStore(ReadingStore):
    """Latest and historical values per asset + kind"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @collaborator_call('reading store')
    def record_meter(self, organization_id: str, asset_id: str, meter_kind: str,
                     value: float, recorded_at: datetime,
                     recorded_by_id: Optional[str] = None, source: str = 'manual',
                     notes: Optional[str] = None) -> MeterReading:
        with self.db.get_session() as session:
            previous = session.query(MeterReading).filter(
                MeterReading.organization_id == organization_id,
                MeterReading.asset_id == asset_id,
                MeterReading.meter_kind == meter_kind
            ).order_by(MeterReading.recorded_at.desc()).first()

            previous_value = previous.value if previous else None
            reading = MeterReading(
                organization_id=organization_id,
                asset_id=asset_id,
                meter_kind=meter_kind,
                value=float(value),
                previous_value=previous_value,
                usage_since_last=float(value) - previous_value if previous_value is not None else None,
                recorded_at=recorded_at,
                recorded_by_id=recorded_by_id,
                source=source,
                notes=notes
            )
            session.add(reading)
            session.flush()
            return reading

    @collaborator_call('reading store')
    def latest_meter_value(self, organization_id: str, asset_id: str,
                           meter_kind: str) -> Optional[float]:
        with self.db.get_session() as session:
            row = session.query(MeterReading.value).filter(
                MeterReading.organization_id == organization_id,
                MeterReading.asset_id == asset_id,
                MeterReading.meter_kind == meter_kind
            ).order_by(MeterReading.recorded_at.desc()).first()
            return row[0] if row else None

    @collaborator_call('reading store')
    def latest_value(self, organization_id: str, asset_id: str, kind: str) -> Optional[float]:
        with self.db.get_session() as session:
            meter = session.query(MeterReading.value, MeterReading.recorded_at).filter(
                MeterReading.organization_id == organization_id,
                MeterReading.asset_id == asset_id,
                MeterReading.meter_kind == kind
            ).order_by(MeterReading.recorded_at.desc()).first()
            sensor = session.query(SensorReading.value, SensorReading.timestamp).filter(
                SensorReading.organization_id == organization_id,
                SensorReading.asset_id == asset_id,
                SensorReading.sensor_kind == kind
            ).order_by(SensorReading.timestamp.desc()).first()

        candidates = [row for row in (meter, sensor) if row is not None]
        if not candidates:
            return None
        return max(candidates, key=lambda row: row[1])[0]

    @collaborator_call('reading store')
    def record_sensor(self, organization_id: str, values: Dict[str, Any]) -> SensorReading:
        with self.db.get_session() as session:
            reading = SensorReading(organization_id=organization_id, **values)
            session.add(reading)
            session.flush()
            return reading

    @collaborator_call('reading store')
    def sensor_history(self, organization_id: str, asset_id: str,
                       sensor_kind: Optional[str] = None,
                       since: Optional[datetime] = None,
                       until: Optional[datetime] = None,
                       limit: Optional[int] = None,
                       newest_first: bool = False) -> List[SensorReading]:
        with self.db.get_session() as session:
            query = session.query(SensorReading).filter(
                SensorReading.organization_id == organization_id,
                SensorReading.asset_id == asset_id
            )
            if sensor_kind:
                query = query.filter(SensorReading.sensor_kind == sensor_kind)
            if since is not None:
                query = query.filter(SensorReading.timestamp >= since)
            if until is not None:
                query = query.filter(SensorReading.timestamp <= until)

            order = SensorReading.timestamp.desc() if newest_first else SensorReading.timestamp.asc()
            query = query.order_by(order)
            if limit:
                query = query.limit(limit)
            return query.all()

    @collaborator_call('reading store')
    def sensor_values_for_assets(self, organization_id: str, asset_ids: Sequence[str],
                                 since: datetime) -> List[float]:
        if not asset_ids:
            return []
        with self.db.get_session() as session:
            rows = session.query(SensorReading.value).filter(
                SensorReading.organization_id == organization_id,
                SensorReading.asset_id.in_(list(asset_ids)),
                SensorReading.timestamp >= since
            ).order_by(SensorReading.timestamp.asc()).all()
            return [row[0] for row in rows]

    @collaborator_call('reading store')
    def assets_with_sensor_data(self, since: datetime,
                                organization_id: Optional[str] = None) -> List[Tuple[str, str]]:
        with self.db.get_session() as session:
            query = session.query(
                SensorReading.organization_id, SensorReading.asset_id
            ).filter(SensorReading.timestamp >= since).distinct()
            if organization_id:
                query = query.filter(SensorReading.organization_id == organization_id)
            return [(row[0], row[1]) for row in query.all()]
