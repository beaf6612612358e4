"""
Unit Tests for the Prediction Model Registry
"""

import unittest

from src.database.enums import ModelType
from src.database.models import Prediction
from src.utils.exceptions import InsufficientDataError, InvalidConfigurationError, NotFoundError
from tests.utils.harness import ORG, OTHER_ORG, START, EngineHarness


class TestModelRegistry(unittest.TestCase):

    def setUp(self):
        self.h = EngineHarness()
        self.registry = self.h.engine.models
        self.pump = self.h.add_asset('Pump A', asset_type='pump')

    def tearDown(self):
        self.h.close()

    def test_create_merges_defaults(self):
        model = self.registry.create(ORG, 'Pump anomalies', 'anomaly_detection', asset_type='pump',
                                     parameters={'window_size': 50})

        self.assertEqual(model.status, 'inactive')
        self.assertEqual(model.model_type, 'anomaly_detection')
        self.assertEqual(model.parameters['window_size'], 50)
        self.assertEqual(model.parameters['zscore_threshold'], 3.0)
        self.assertEqual(model.parameters['min_data_points'], 30)
        self.assertEqual(model.created_at, START)

    def test_create_rejects_unknown_type(self):
        with self.assertRaises(InvalidConfigurationError):
            self.registry.create(ORG, 'Mystery', 'crystal_ball')

    def test_get_and_list(self):
        pump_model = self.registry.create(ORG, 'Pump life', ModelType.REMAINING_LIFE, asset_type='pump')
        self.registry.create(ORG, 'Fan life', ModelType.REMAINING_LIFE, asset_type='fan')

        self.assertEqual(self.registry.get(ORG, pump_model.id).name, 'Pump life')
        self.assertEqual(len(self.registry.list(ORG)), 2)
        self.assertEqual([m.id for m in self.registry.list(ORG, asset_type='pump')], [pump_model.id])
        self.assertEqual(self.registry.list(OTHER_ORG), [])

        with self.assertRaises(NotFoundError):
            self.registry.get(OTHER_ORG, pump_model.id)

    def test_train_without_assets(self):
        model = self.registry.create(ORG, 'Fan anomalies', 'anomaly_detection', asset_type='fan')
        with self.assertRaises(InvalidConfigurationError):
            self.registry.train(ORG, model.id)

    def test_train_with_too_little_data(self):
        model = self.registry.create(ORG, 'Pump anomalies', 'anomaly_detection', asset_type='pump')
        self.h.add_sensor_readings(self.pump.id, [50.0] * 5)

        with self.assertRaises(InsufficientDataError) as ctx:
            self.registry.train(ORG, model.id)
        self.assertEqual(ctx.exception.to_dict()['details'], {'minimum_required': 30, 'found': 5})
        self.assertEqual(self.registry.get(ORG, model.id).status, 'inactive')

    def test_train_anomaly_model(self):
        model = self.registry.create(ORG, 'Pump anomalies', 'anomaly_detection', asset_type='pump')
        self.h.add_sensor_readings(self.pump.id, [48.0, 52.0] * 15)

        trained = self.registry.train(ORG, model.id)

        self.assertEqual(trained.status, 'active')
        self.assertEqual(trained.training_data_points, 30)
        self.assertEqual(trained.last_trained_at, START)
        self.assertEqual(trained.parameters['zscore_threshold'], 2.5)
        self.assertEqual(trained.training_stats['mean'], 50.0)
        self.assertNotIn('iqr', trained.training_stats)
        self.assertIsNone(trained.accuracy)

        active = self.registry.active_model(ORG, 'pump', ModelType.ANOMALY_DETECTION)
        self.assertEqual(active.id, model.id)
        self.assertIsNone(self.registry.active_model(ORG, 'pump', ModelType.FAILURE_PREDICTION))
        self.assertIsNone(self.registry.active_model(ORG, None, ModelType.ANOMALY_DETECTION))

    def test_training_picks_up_resolved_accuracy(self):
        model = self.registry.create(ORG, 'Pump anomalies', 'anomaly_detection', asset_type='pump')
        self.h.add_sensor_readings(self.pump.id, [48.0, 52.0] * 15)
        with self.h.db.get_session() as session:
            for accurate in (True, True, True, False):
                session.add(Prediction(
                    organization_id=ORG, asset_id=self.pump.id, prediction_kind='failure',
                    narrative='Failure probability: 70.0%', probability=70.0, confidence=60.0,
                    risk_level='high', status='resolved', was_accurate=accurate, created_at=START
                ))

        trained = self.registry.train(ORG, model.id)
        self.assertEqual(trained.accuracy, 75.0)
        self.assertEqual(trained.correct_predictions, 3)
        self.assertEqual(trained.total_predictions, 4)
        self.assertEqual(self.registry.active_accuracies(ORG), [75.0])

    def test_trained_threshold_drives_detection(self):
        model = self.registry.create(ORG, 'Pump anomalies', 'anomaly_detection', asset_type='pump')
        self.h.add_sensor_readings(self.pump.id, [48.0, 52.0] * 15)
        self.registry.train(ORG, model.id)

        # z = 2.75: normal under the default threshold of 3, medium under the trained 2.5
        result = self.h.engine.detector.ingest(ORG, {
            'asset_id': self.pump.id, 'sensor_kind': 'temperature', 'value': 55.5
        })
        self.assertTrue(result.is_anomaly)
        self.assertEqual(result.prediction.model_id, model.id)
        self.assertEqual(result.prediction.risk_level, 'medium')


if __name__ == '__main__':
    unittest.main()
