"""Tests for netspeed.stats -- pure helper functions."""

import random
import unittest

from netspeed.stats import (
    LatencyStats,
    calculate_jitter,
    calculate_trimmed_mean,
    format_bytes,
    format_latency,
    format_speed,
    haversine_km,
    outlier_count,
)


class TestOutlierCount(unittest.TestCase):
    def test_too_few_samples(self):
        self.assertEqual(outlier_count(0), 0)
        self.assertEqual(outlier_count(1), 0)
        self.assertEqual(outlier_count(2), 0)

    def test_small_sets_drop_one(self):
        self.assertEqual(outlier_count(3), 1)
        self.assertEqual(outlier_count(10), 1)

    def test_grows_with_n(self):
        self.assertEqual(outlier_count(11), 2)
        self.assertEqual(outlier_count(100), 10)

    def test_never_drops_everything(self):
        for n in range(1, 50):
            self.assertLess(outlier_count(n, fraction=0.9), max(n, 1))

    def test_zero_fraction(self):
        self.assertEqual(outlier_count(50, fraction=0), 0)


class TestTrimmedMean(unittest.TestCase):
    def test_empty(self):
        self.assertEqual(calculate_trimmed_mean([]), 0.0)

    def test_outlier_dropped(self):
        self.assertAlmostEqual(calculate_trimmed_mean([50.0, 52.0, 1000.0]), 51.0)

    def test_two_samples_not_trimmed(self):
        self.assertAlmostEqual(calculate_trimmed_mean([30.0, 31.0]), 30.5)

    def test_order_does_not_matter(self):
        self.assertAlmostEqual(
            calculate_trimmed_mean([1000.0, 50.0, 52.0]),
            calculate_trimmed_mean([52.0, 1000.0, 50.0]),
        )

    def test_within_min_max(self):
        rng = random.Random(7)
        for _ in range(50):
            samples = [rng.uniform(1, 500) for _ in range(rng.randint(1, 30))]
            tm = calculate_trimmed_mean(samples)
            self.assertGreaterEqual(tm, min(samples))
            self.assertLessEqual(tm, max(samples))

    def test_not_above_plain_mean(self):
        rng = random.Random(11)
        for _ in range(50):
            samples = [rng.uniform(1, 500) for _ in range(rng.randint(1, 30))]
            self.assertLessEqual(calculate_trimmed_mean(samples), sum(samples) / len(samples) + 1e-9)

    def test_monotonic_in_samples(self):
        base = [10.0, 20.0, 30.0, 40.0, 50.0]
        raised = [10.0, 20.0, 35.0, 40.0, 50.0]
        self.assertGreaterEqual(calculate_trimmed_mean(raised), calculate_trimmed_mean(base))

    def test_adding_fast_sample_never_raises_mean(self):
        rng = random.Random(23)
        for n in range(1, 31):
            for _ in range(20):
                samples = [rng.uniform(1, 500) for _ in range(n)]
                before = calculate_trimmed_mean(samples)

                fastest = rng.uniform(0, min(samples))
                self.assertLessEqual(calculate_trimmed_mean(samples + [fastest]), before + 1e-9)

                below_mean = rng.uniform(0, before)
                self.assertLessEqual(calculate_trimmed_mean(samples + [below_mean]), before + 1e-9)

    def test_third_sample_starts_trimming(self):
        # Two samples are averaged; a faster third one pushes the slowest out.
        self.assertAlmostEqual(calculate_trimmed_mean([40.0, 60.0]), 50.0)
        self.assertAlmostEqual(calculate_trimmed_mean([40.0, 60.0, 30.0]), 35.0)


class TestJitter(unittest.TestCase):
    def test_single_sample(self):
        self.assertEqual(calculate_jitter([10.0]), 0.0)

    def test_consecutive_differences(self):
        # |20-10| + |15-20| = 15, / 2 = 7.5
        self.assertAlmostEqual(calculate_jitter([10.0, 20.0, 15.0]), 7.5)


class TestLatencyStats(unittest.TestCase):
    def test_calculate(self):
        stats = LatencyStats(samples=[50.0, 52.0, 1000.0], lost=1, attempts=4)
        stats.calculate()
        self.assertEqual(stats.count, 3)
        self.assertEqual(stats.min, 50.0)
        self.assertEqual(stats.max, 1000.0)
        self.assertAlmostEqual(stats.trimmed_mean, 51.0)
        self.assertAlmostEqual(stats.packet_loss, 25.0)
        self.assertTrue(stats.valid)

    def test_empty_is_invalid(self):
        stats = LatencyStats(lost=5, attempts=5)
        stats.calculate()
        self.assertFalse(stats.valid)
        self.assertEqual(stats.count, 0)
        self.assertAlmostEqual(stats.packet_loss, 100.0)

    def test_to_dict(self):
        stats = LatencyStats(samples=[30.0, 31.0], attempts=2)
        stats.calculate()
        d = stats.to_dict()
        self.assertEqual(d["count"], 2)
        self.assertAlmostEqual(d["trimmed_mean"], 30.5)
        self.assertEqual(d["lost"], 0)


class TestHaversine(unittest.TestCase):
    def test_same_point(self):
        self.assertAlmostEqual(haversine_km((52.5, 13.4), (52.5, 13.4)), 0.0)

    def test_berlin_paris(self):
        d = haversine_km((52.52, 13.405), (48.8566, 2.3522))
        self.assertAlmostEqual(d, 878, delta=10)


class TestFormatting(unittest.TestCase):
    def test_speed(self):
        self.assertEqual(format_speed(95.5), "95.50 Mbps")
        self.assertEqual(format_speed(1500), "1.50 Gbps")

    def test_latency(self):
        self.assertEqual(format_latency(12.34), "12.3 ms")
        self.assertEqual(format_latency(1500), "1.50 s")

    def test_bytes(self):
        self.assertEqual(format_bytes(512), "512 B")
        self.assertEqual(format_bytes(2048), "2.00 KB")


if __name__ == "__main__":
    unittest.main()
