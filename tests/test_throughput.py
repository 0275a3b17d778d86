"""Tests for netspeed.throughput -- rate math, counter and engine."""

import asyncio
import threading
import unittest

from netspeed.errors import AllStreamsFailed, Cancelled, NoServerAvailable, ThroughputTimeout
from netspeed.throughput import (
    ByteCounter,
    StabilityDetector,
    ThroughputEngine,
    compute_throughput,
    window_rates,
)
from netspeed.transport import TransferKind

from fakes import FAIL, FLOW, IDLE, FakeTransport, fast_config, make_server


def _synthetic_samples(streams, per_stream_bps, duration, warm_up, interval=0.2):
    """Deterministic samples: slow ramp before warm-up, steady rate after."""
    samples = []
    ramp_rate = per_stream_bps / 4
    t = interval
    while t <= duration + 1e-9:
        if t < warm_up:
            total = int(streams * ramp_rate * t)
        else:
            total = int(streams * ramp_rate * warm_up + streams * per_stream_bps * (t - warm_up))
        samples.append((round(t, 6), total))
        t += interval
    return samples


class TestComputeThroughput(unittest.TestCase):
    def test_five_streams_at_one_megabyte(self):
        samples = _synthetic_samples(5, 1_000_000, duration=10.0, warm_up=2.0)
        bps, measured, elapsed = compute_throughput(samples, warm_up=2.0)
        self.assertAlmostEqual(bps / 1_000_000, 40.0, places=3)
        self.assertAlmostEqual(elapsed, 8.0, places=3)
        self.assertAlmostEqual(measured, 40_000_000, delta=10)

    def test_warm_up_excluded(self):
        samples = [(1.0, 10_000_000), (2.0, 11_000_000), (3.0, 12_000_000)]
        bps, measured, elapsed = compute_throughput(samples, warm_up=2.0)
        self.assertEqual(measured, 1_000_000)
        self.assertAlmostEqual(bps, 8_000_000)

    def test_no_sample_after_warm_up_uses_whole_window(self):
        samples = [(0.5, 500_000), (1.0, 1_000_000)]
        bps, measured, elapsed = compute_throughput(samples, warm_up=2.0)
        self.assertEqual(measured, 1_000_000)
        self.assertAlmostEqual(elapsed, 1.0)
        self.assertAlmostEqual(bps, 8_000_000)

    def test_baseline_is_last_sample(self):
        samples = [(1.0, 100), (2.5, 2_500)]
        bps, measured, elapsed = compute_throughput(samples, warm_up=2.0)
        self.assertEqual(measured, 2_500)
        self.assertAlmostEqual(elapsed, 2.5)

    def test_empty(self):
        self.assertEqual(compute_throughput([], 2.0), (0.0, 0, 0.0))


class TestWindowRates(unittest.TestCase):
    def test_rates(self):
        samples = [(0.5, 0), (1.0, 125_000), (1.5, 250_000)]
        self.assertEqual([round(r, 3) for r in window_rates(samples)], [2.0, 2.0])

    def test_warm_up_windows_skipped(self):
        samples = [(0.5, 0), (1.0, 125_000), (1.5, 250_000)]
        self.assertEqual(len(window_rates(samples, warm_up=1.0)), 1)


class TestByteCounter(unittest.TestCase):
    def test_threaded_increments_not_lost(self):
        counter = ByteCounter()
        threads = [
            threading.Thread(target=lambda: [counter.add(3) for _ in range(20_000)])
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(counter.value, 8 * 20_000 * 3)

    def test_negative_rejected(self):
        with self.assertRaises(ValueError):
            ByteCounter().add(-1)


class TestStabilityDetector(unittest.TestCase):
    def test_steady_rate_becomes_stable(self):
        detector = StabilityDetector(threshold=0.05, window=1.0, warm_up=0.5)
        samples = []
        stable_at = None
        for i in range(1, 30):
            samples.append((i * 0.2, i * 100_000))
            if detector.update(samples):
                stable_at = samples[-1][0]
                break
        self.assertIsNotNone(stable_at)
        self.assertGreaterEqual(stable_at, 1.5)

    def test_fluctuating_rate_never_stable(self):
        detector = StabilityDetector(threshold=0.05, window=0.5, warm_up=0.0)
        samples = [(0.0, 0)]
        total = 0
        for i in range(1, 40):
            total += 100_000 if i % 2 else 200_000
            samples.append((i * 0.2, total))
            self.assertFalse(detector.update(samples))

    def test_ignored_during_warm_up(self):
        detector = StabilityDetector(threshold=0.5, window=0.0, warm_up=10.0)
        samples = [(i * 0.2, i * 1000) for i in range(1, 20)]
        self.assertFalse(any(detector.update(samples[:n]) for n in range(1, 20)))


class TestEngine(unittest.IsolatedAsyncioTestCase):
    async def test_download_measured(self):
        server = make_server(1, host="a.test")
        engine = ThroughputEngine(fast_config(), FakeTransport())
        result = await engine.measure(TransferKind.DOWNLOAD, server)

        self.assertIs(result.server, server)
        self.assertEqual(result.kind, TransferKind.DOWNLOAD)
        self.assertEqual(result.streams, 2)
        self.assertEqual(result.failed_streams, 0)
        self.assertGreater(result.bytes_total, 0)
        self.assertGreater(result.elapsed, 0)
        # Two fake streams deliver at most ~1 MB/s each.
        self.assertGreater(result.mbps, 2.0)
        self.assertLess(result.mbps, 20.0)
        self.assertFalse(result.stopped_early)

    async def test_upload_uses_same_routine(self):
        transport = FakeTransport()
        engine = ThroughputEngine(fast_config(), transport)
        result = await engine.measure(TransferKind.UPLOAD, make_server(1, host="a.test"))
        self.assertEqual(result.kind, TransferKind.UPLOAD)
        self.assertTrue(all(kind is TransferKind.UPLOAD for kind, _ in transport.transfers))

    async def test_one_failed_stream_tolerated(self):
        transport = FakeTransport(streams={"a.test": [FAIL, FLOW]})
        result = await ThroughputEngine(fast_config(), transport).measure(
            TransferKind.DOWNLOAD, make_server(1, host="a.test"),
        )
        self.assertEqual(result.failed_streams, 1)
        self.assertGreater(result.bytes_total, 0)

    async def test_all_streams_failed(self):
        transport = FakeTransport(streams={"a.test": [FAIL]})
        with self.assertRaises(AllStreamsFailed):
            await ThroughputEngine(fast_config(), transport).measure(
                TransferKind.DOWNLOAD, make_server(1, host="a.test"),
            )

    async def test_no_data_before_deadline(self):
        transport = FakeTransport(streams={"a.test": [IDLE]})
        with self.assertRaises(ThroughputTimeout):
            await ThroughputEngine(fast_config(download_duration=0.2), transport).measure(
                TransferKind.DOWNLOAD, make_server(1, host="a.test"),
            )

    async def test_fallback_to_next_server(self):
        bad = make_server(1, host="bad.test")
        idle = make_server(2, host="idle.test")
        good = make_server(3, host="good.test")
        transport = FakeTransport(streams={"bad.test": [FAIL], "idle.test": [IDLE]})
        engine = ThroughputEngine(fast_config(download_duration=0.2), transport)

        result = await engine.run(TransferKind.DOWNLOAD, [bad, idle, good])
        self.assertIs(result.server, good)

    async def test_every_server_failed(self):
        servers = [make_server(i, host=f"h{i}.test") for i in range(2)]
        transport = FakeTransport(streams={s.host: [FAIL] for s in servers})
        engine = ThroughputEngine(fast_config(), transport)

        with self.assertRaises(NoServerAvailable) as ctx:
            await engine.run(TransferKind.UPLOAD, servers)
        self.assertEqual(ctx.exception.tried, 2)
        self.assertIsInstance(ctx.exception.__cause__, AllStreamsFailed)

    async def test_cancel_mid_session(self):
        cancel = asyncio.Event()
        engine = ThroughputEngine(fast_config(download_duration=5.0), FakeTransport(), cancel_event=cancel)
        asyncio.get_running_loop().call_later(0.15, cancel.set)

        with self.assertRaises(Cancelled):
            await engine.run(TransferKind.DOWNLOAD, [make_server(1, host="a.test"), make_server(2, host="b.test")])

    async def test_cancel_before_start(self):
        cancel = asyncio.Event()
        cancel.set()
        transport = FakeTransport()
        engine = ThroughputEngine(fast_config(), transport, cancel_event=cancel)
        with self.assertRaises(Cancelled):
            await engine.measure(TransferKind.DOWNLOAD, make_server(1, host="a.test"))
        self.assertEqual(transport.transfers, [])

    async def test_early_stop(self):
        cfg = fast_config(
            download_duration=5.0,
            early_stop=True,
            stability_threshold=0.9,
            stability_window=0.2,
            sample_interval=0.1,
        )
        result = await ThroughputEngine(cfg, FakeTransport()).measure(
            TransferKind.DOWNLOAD, make_server(1, host="a.test"),
        )
        self.assertTrue(result.stopped_early)
        self.assertLess(result.duration, 5.0)

    async def test_progress_reported(self):
        seen = []

        def on_progress(kind, server, fraction, total, mbps):
            seen.append((kind, fraction, total, mbps))

        engine = ThroughputEngine(fast_config(), FakeTransport(), on_progress=on_progress)
        await engine.measure(TransferKind.DOWNLOAD, make_server(1, host="a.test"))

        self.assertTrue(seen)
        self.assertTrue(all(0.0 <= f <= 1.0 for _, f, _, _ in seen))
        totals = [t for _, _, t, _ in seen]
        self.assertEqual(totals, sorted(totals))

    async def test_result_to_dict(self):
        result = await ThroughputEngine(fast_config(), FakeTransport()).measure(
            TransferKind.DOWNLOAD, make_server(7, host="a.test"),
        )
        d = result.to_dict()
        self.assertEqual(d["kind"], "download")
        self.assertEqual(d["server_id"], 7)
        self.assertEqual(d["streams"], 2)


if __name__ == "__main__":
    unittest.main()
