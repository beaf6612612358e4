"""
Unit tests for the database layer and the default collaborators
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from src.collaborators.notifications import NotificationSystem
from src.collaborators.sql_collaborators import SqlAssetDirectory, collaborator_call
from src.database.models import Asset
from src.database.reading_store import SqlReadingStore
from src.utils.exceptions import NotFoundError, TransientCollaboratorError
from tests.utils.harness import ORG, OTHER_ORG, file_database


def test_session_commits_and_rolls_back(memory_db):
    with memory_db.get_session() as session:
        session.add(Asset(organization_id=ORG, name='Boiler'))

    with pytest.raises(RuntimeError):
        with memory_db.get_session() as session:
            session.add(Asset(organization_id=ORG, name='Ghost'))
            session.flush()
            raise RuntimeError("abort")

    with memory_db.get_session() as session:
        assert [a.name for a in session.query(Asset).all()] == ['Boiler']


def test_file_database_persists(temp_dir):
    path = str(temp_dir / 'engine.db')
    first = file_database(path)
    SqlAssetDirectory(first).add_asset(ORG, 'Chiller', asset_type='chiller')
    first.close()

    second = file_database(path)
    try:
        assets = SqlAssetDirectory(second).list_assets_by_type(ORG, 'chiller')
        assert [a.name for a in assets] == ['Chiller']
    finally:
        second.close()


def test_asset_directory_scopes_by_organization(memory_db):
    directory = SqlAssetDirectory(memory_db)
    asset = directory.add_asset(ORG, 'Fan 3', criticality=2)

    assert directory.get_asset(ORG, asset.id).criticality == 2
    with pytest.raises(NotFoundError):
        directory.get_asset(OTHER_ORG, asset.id)


def test_meter_readings_track_usage(memory_db, fixed_clock):
    store = SqlReadingStore(memory_db)
    store.record_meter(ORG, 'a1', 'cycles', 100, fixed_clock())
    second = store.record_meter(ORG, 'a1', 'cycles', 160, fixed_clock() + timedelta(hours=1))

    assert second.previous_value == 100.0
    assert second.usage_since_last == 60.0
    assert store.latest_meter_value(ORG, 'a1', 'cycles') == 160.0
    assert store.latest_meter_value(ORG, 'a1', 'hours') is None


def test_latest_value_prefers_newest_source(memory_db, fixed_clock):
    store = SqlReadingStore(memory_db)
    now = fixed_clock()
    store.record_meter(ORG, 'a1', 'pressure', 5.0, now - timedelta(minutes=10))
    store.record_sensor(ORG, {'asset_id': 'a1', 'sensor_kind': 'pressure', 'value': 6.5, 'timestamp': now})

    assert store.latest_value(ORG, 'a1', 'pressure') == 6.5
    assert store.latest_value(ORG, 'a1', 'humidity') is None


def test_assets_with_sensor_data(harness):
    first = harness.add_asset('Pump A')
    second = harness.add_asset('Pump B', organization_id=OTHER_ORG)
    harness.add_sensor_readings(first.id, [1.0, 2.0])
    harness.add_sensor_readings(second.id, [3.0], organization_id=OTHER_ORG)

    since = harness.clock() - timedelta(days=1)
    pairs = harness.engine.readings.assets_with_sensor_data(since)
    assert sorted(pairs) == sorted([(ORG, first.id), (OTHER_ORG, second.id)])
    assert harness.engine.readings.assets_with_sensor_data(since, ORG) == [(ORG, first.id)]


def test_collaborator_call_surfaces_transient_errors():
    @collaborator_call('asset directory')
    def lookup():
        raise OperationalError('SELECT 1', {}, Exception('database is locked'))

    with pytest.raises(TransientCollaboratorError) as info:
        lookup()
    assert info.value.status_code == 503
    assert info.value.details == {'collaborator': 'asset directory'}
    assert 'database is locked' in info.value.message


def test_notification_history_is_bounded():
    sink = NotificationSystem(history_size=2)
    for number in range(3):
        sink.notify(f"Event {number}", 'body', 'warning')

    assert [n['subject'] for n in sink.recent()] == ['Event 1', 'Event 2']
    assert sink.recent(limit=1)[0]['type'] == 'warning'
    assert sink.recent(limit=1)[0]['timestamp'].tzinfo is None


def test_recording_notifier(notifier):
    notifier.notify('Maintenance missed', 'Filter swap', payload={'schedule_id': 's1'})
    assert notifier.subjects() == ['Maintenance missed']
    assert notifier.events[0]['payload'] == {'schedule_id': 's1'}
