"""
Monitoring engine tests.

Covers the per-tick entry points, absence/gaze interplay, time-quality
bucketing, tick tokens, teardown and snapshot reads.
"""

import threading
import unittest

from oaps_monitor.config import MonitorConfig
from oaps_monitor.engine import MonitoringEngine
from oaps_monitor.errors import ContractViolation
from oaps_monitor.events import EventType
from oaps_monitor.gaze import GazeMeasurement
from oaps_monitor.gaze_state import GazeState
from oaps_monitor.objects import DetectionHit
from oaps_monitor.risk import RiskLevel


def gaze(t, yaw=0.0, pitch=0.0, face=True, conf=0.95, centered=False):
    return GazeMeasurement(
        yaw_deg=yaw,
        pitch_deg=pitch,
        roll_deg=0.0,
        face_detected=face,
        face_confidence=conf,
        is_centered=centered,
        sampled_at_ms=t,
    )


def phone(score=0.9):
    return DetectionHit(label="cell phone", score=score, bbox=(0.0, 0.0, 40.0, 80.0))


class TestEngineTicks(unittest.TestCase):

    def setUp(self):
        self.engine = MonitoringEngine(MonitorConfig())
        self.engine.start_session(now_ms=0, session_id="s1")

    def test_inactive_engine_is_a_no_op(self):
        engine = MonitoringEngine()
        self.assertEqual(engine.on_gaze_measurement(gaze(0, yaw=40)), [])
        self.assertEqual(engine.on_object_detection_batch([phone()], 0), [])
        self.assertEqual(engine.on_tab_switch(0), [])
        self.assertEqual(engine.on_tick(1000).total_ms, 0)
        self.assertEqual(engine.current_risk().score, 0)
        self.assertIsNone(engine.end_session())

    def test_gaze_away_flows_into_log_and_risk(self):
        self.assertEqual(self.engine.on_gaze_measurement(gaze(0, yaw=40)), [])
        self.assertEqual(self.engine.gaze_state, GazeState.MONITORING_DEVIATION)
        emitted = self.engine.on_gaze_measurement(gaze(2500, yaw=40))
        self.assertEqual(len(emitted), 1)
        self.assertEqual(emitted[0].type, EventType.GAZE_AWAY)
        self.assertEqual(self.engine.events(), tuple(emitted))
        risk = self.engine.current_risk()
        self.assertEqual(risk.score, 8)
        self.assertEqual(risk.level, RiskLevel.LOW)

    def test_absence_degrades_state_without_gaze_event(self):
        self.engine.on_gaze_measurement(gaze(0, yaw=40))
        self.engine.on_gaze_measurement(gaze(2000, yaw=40))
        # face lost right before the gaze sustain would have fired
        self.assertEqual(self.engine.on_gaze_measurement(gaze(2600, yaw=40, face=False, conf=0.0)), [])
        self.assertEqual(self.engine.gaze_state, GazeState.ABSENT)
        emitted = self.engine.on_gaze_measurement(gaze(5100, face=False, conf=0.0))
        self.assertEqual([e.type for e in emitted], [EventType.FACE_ABSENT])
        self.assertEqual(emitted[0].metadata["durationMs"], 2500)
        self.assertFalse(any(e.type == EventType.GAZE_AWAY for e in self.engine.events()))

    def test_nan_confidence_is_treated_as_absent(self):
        self.engine.on_gaze_measurement(gaze(0, conf=float("nan")))
        self.assertEqual(self.engine.gaze_state, GazeState.ABSENT)

    def test_time_quality_follows_combined_state(self):
        self.engine.on_gaze_measurement(gaze(0))
        self.engine.on_tick(1000)
        self.engine.on_gaze_measurement(gaze(1000, yaw=21))
        self.engine.on_tick(2000)
        self.engine.on_gaze_measurement(gaze(2000, yaw=40))
        self.engine.on_tick(3000)
        self.engine.on_gaze_measurement(gaze(3000, face=False, conf=0.0))
        quality = self.engine.on_tick(4000)
        self.assertEqual(quality.focused_ms, 1000)
        self.assertEqual(quality.minor_movement_ms, 1000)
        self.assertEqual(quality.deviation_ms, 1000)
        self.assertEqual(quality.absence_ms, 1000)
        self.assertEqual(quality.total_ms, 4000)
        self.assertEqual(quality.focus_ratio, 0.5)
        self.assertEqual(self.engine.time_quality(), quality)

    def test_all_focused_session(self):
        for t in range(0, 30_001, 100):
            self.engine.on_gaze_measurement(gaze(t, yaw=3, pitch=10))
            self.engine.on_tick(t)
        self.assertEqual(self.engine.time_quality().focus_ratio, 1.0)
        self.assertEqual(self.engine.summary().focusRatio, 1.0)

    def test_objects_and_tabs(self):
        self.assertEqual(len(self.engine.on_object_detection_batch([phone()], 1000)), 1)
        self.assertEqual(self.engine.on_object_detection_batch([phone()], 2000), [])
        self.assertEqual(len(self.engine.on_tab_switch(3000, "blur")), 1)
        self.assertEqual(self.engine.on_tab_switch(3300, "visibilitychange"), [])
        summary = self.engine.summary()
        self.assertEqual(summary.objectDetectionCount, 1)
        self.assertEqual(summary.tabSwitchCount, 1)
        self.assertEqual(summary.riskScore, 26)
        self.assertEqual(summary.sessionDurationMs, 3300)

    def test_event_ids_unique_and_ordered(self):
        self.engine.on_object_detection_batch([phone(), DetectionHit("book", 0.8, (0, 0, 1, 1))], 100)
        self.engine.on_tab_switch(100)
        ids = [e.id for e in self.engine.events()]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(
            [e.type for e in self.engine.events()],
            [EventType.OBJECT_DETECTED, EventType.OBJECT_DETECTED, EventType.TAB_SWITCH],
        )

    def test_report_payload(self):
        self.engine.on_gaze_measurement(gaze(0, yaw=40))
        self.engine.on_gaze_measurement(gaze(3000, yaw=40))
        self.engine.on_tick(3000)
        payload = self.engine.report_payload()
        self.assertEqual(payload.gazeIncidents, 1)
        self.assertEqual(payload.longestGazeAwaySec, 3.0)
        self.assertEqual(payload.sessionDurationSec, 3)
        self.assertEqual(payload.riskScore, 8)


class TestEngineContracts(unittest.TestCase):

    def test_backwards_gaze_timestamp_strict(self):
        engine = MonitoringEngine(MonitorConfig(strict_contracts=True))
        engine.start_session(now_ms=0)
        engine.on_gaze_measurement(gaze(1000))
        with self.assertRaises(ContractViolation):
            engine.on_gaze_measurement(gaze(900))

    def test_backwards_tick_strict(self):
        engine = MonitoringEngine(MonitorConfig(strict_contracts=True))
        engine.start_session(now_ms=0)
        engine.on_tick(1000)
        with self.assertRaises(ContractViolation):
            engine.on_tick(999)

    def test_backwards_timestamp_clamped_in_production(self):
        engine = MonitoringEngine(MonitorConfig())
        engine.start_session(now_ms=0)
        engine.on_gaze_measurement(gaze(0, yaw=40))
        engine.on_gaze_measurement(gaze(1000, yaw=40))
        with self.assertLogs("oaps_monitor.errors", level="WARNING"):
            engine.on_gaze_measurement(gaze(400, yaw=40))
        self.assertEqual(len(engine.on_gaze_measurement(gaze(2500, yaw=40))), 1)

    def test_tokens_in_order_are_accepted(self):
        engine = MonitoringEngine(MonitorConfig(strict_contracts=True))
        engine.start_session(now_ms=0)
        first = engine.begin_tick()
        second = engine.begin_tick()
        engine.on_gaze_measurement(gaze(100), token=first)
        engine.on_tick(100, token=second)
        self.assertEqual(second.seq, first.seq + 1)

    def test_out_of_order_token_strict(self):
        engine = MonitoringEngine(MonitorConfig(strict_contracts=True))
        engine.start_session(now_ms=0)
        engine.begin_tick()
        second = engine.begin_tick()
        with self.assertRaises(ContractViolation):
            engine.on_tick(100, token=second)

    def test_out_of_order_token_warns_in_production(self):
        engine = MonitoringEngine(MonitorConfig())
        engine.start_session(now_ms=0)
        engine.begin_tick()
        second = engine.begin_tick()
        with self.assertLogs("oaps_monitor.engine", level="WARNING"):
            quality = engine.on_tick(100, token=second)
        self.assertEqual(quality.total_ms, 100)

    def test_reused_token_is_dropped_in_production(self):
        engine = MonitoringEngine(MonitorConfig())
        engine.start_session(now_ms=0)
        token = engine.begin_tick()
        book = DetectionHit("book", 0.9, (0, 0, 1, 1))
        self.assertEqual(len(engine.on_object_detection_batch([book], 100, token=token)), 1)

        with self.assertLogs("oaps_monitor.engine", level="WARNING"):
            emitted = engine.on_object_detection_batch([phone()], 200, token=token)
        self.assertEqual(emitted, [])
        self.assertEqual([e.metadata["label"] for e in engine.events()], ["book"])

        # the next token in sequence is still accepted
        self.assertEqual(len(engine.on_object_detection_batch([phone()], 300, token=engine.begin_tick())), 1)

    def test_reused_token_strict(self):
        engine = MonitoringEngine(MonitorConfig(strict_contracts=True))
        engine.start_session(now_ms=0)
        token = engine.begin_tick()
        engine.on_tick(100, token=token)
        with self.assertRaises(ContractViolation):
            engine.on_tick(200, token=token)
        self.assertEqual(engine.time_quality().total_ms, 100)

    def test_backwards_end_timestamp_strict_keeps_session(self):
        engine = MonitoringEngine(MonitorConfig(strict_contracts=True))
        engine.start_session(now_ms=0, session_id="keep")
        engine.on_tab_switch(5000)
        with self.assertRaises(ContractViolation):
            engine.end_session(now_ms=1000)

        self.assertTrue(engine.is_active)
        self.assertIsNone(engine.last_report)
        self.assertEqual(len(engine.events()), 1)

        report = engine.end_session(now_ms=6000)
        self.assertEqual(report.sessionId, "keep")
        self.assertEqual(report.metrics.tabSwitchCount, 1)
        self.assertFalse(engine.is_active)

    def test_backwards_end_timestamp_clamped_in_production(self):
        engine = MonitoringEngine(MonitorConfig())
        engine.start_session(now_ms=0)
        engine.on_tab_switch(5000)
        with self.assertLogs("oaps_monitor.errors", level="WARNING"):
            report = engine.end_session(now_ms=1000)
        self.assertEqual(report.endTs, 5000)


class TestEngineTeardown(unittest.TestCase):

    def test_end_session_drops_pending_ticks(self):
        engine = MonitoringEngine()
        engine.start_session(now_ms=0, session_id="a")
        pending = engine.begin_tick()
        engine.end_session(now_ms=1000)
        engine.start_session(now_ms=2000, session_id="b")
        self.assertEqual(engine.on_object_detection_batch([phone()], 2100, token=pending), [])
        self.assertEqual(engine.events(), ())
        # the new session's own tokens still start from zero
        self.assertEqual(engine.begin_tick().seq, 0)

    def test_token_taken_with_no_session_is_dropped(self):
        engine = MonitoringEngine()
        stale = engine.begin_tick()
        engine.start_session(now_ms=0)
        self.assertEqual(engine.on_tab_switch(10, token=stale), [])

    def test_reset_clears_cooldowns_and_state(self):
        engine = MonitoringEngine()
        engine.start_session(now_ms=0)
        self.assertEqual(len(engine.on_object_detection_batch([phone()], 100)), 1)
        engine.on_gaze_measurement(gaze(100, yaw=40))
        engine.reset_session()
        self.assertFalse(engine.is_active)
        self.assertEqual(engine.gaze_state, GazeState.NORMAL)

        engine.start_session(now_ms=200)
        self.assertEqual(engine.gaze_state, GazeState.NORMAL)
        self.assertEqual(len(engine.on_object_detection_batch([phone()], 300)), 1)
        self.assertEqual(len(engine.events()), 1)

    def test_end_session_report(self):
        engine = MonitoringEngine()
        engine.start_session(now_ms=0, session_id="final")
        engine.on_gaze_measurement(gaze(0, yaw=40))
        engine.on_gaze_measurement(gaze(3000, yaw=40))
        engine.on_tab_switch(4000)
        report = engine.end_session(now_ms=120_000)

        self.assertEqual(report.sessionId, "final")
        self.assertEqual(report.endTs, 120_000)
        self.assertEqual(report.payload.sessionDurationSec, 120)
        self.assertEqual(report.payload.riskScore, 14)
        self.assertEqual(report.metrics.gazeDeviationCount, 1)
        self.assertEqual(report.timeQuality["totalSessionTimeMs"], 120_000)
        self.assertEqual(len(report.events), 2)
        self.assertIn("1x GAZE AWAY", report.eventSummary)
        self.assertIs(engine.last_report, report)

        # per-session state is gone after the session ends
        self.assertEqual(engine.events(), ())
        self.assertEqual(engine.current_risk().score, 0)
        self.assertIsNone(engine.end_session())

    def test_start_replaces_running_session(self):
        engine = MonitoringEngine()
        engine.start_session(now_ms=0, session_id="first")
        engine.on_tab_switch(10)
        engine.start_session(now_ms=20, session_id="second")
        self.assertEqual(engine.session_id, "second")
        self.assertEqual(engine.events(), ())


class TestEngineConcurrentReads(unittest.TestCase):

    def test_snapshots_while_appending(self):
        engine = MonitoringEngine()
        engine.start_session(now_ms=0)
        labels = ["cell phone", "book", "laptop", "remote", "keyboard", "mouse"]
        errors = []

        def writer():
            for i in range(200):
                t = i * 5000
                engine.on_object_detection_batch([DetectionHit(l, 0.9, (0, 0, 1, 1)) for l in labels], t)

        def reader():
            try:
                for _ in range(200):
                    snap = engine.events()
                    risk = engine.current_risk()
                    self.assertLessEqual(risk.score, 100)
                    self.assertEqual(len({e.id for e in snap}), len(snap))
            except AssertionError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(engine.events()), 200 * len(labels))


if __name__ == "__main__":
    unittest.main()
