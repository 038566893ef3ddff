"""Tests for exontally.core.stats module."""

import math

import pytest

from exontally.core.introns import CutPoints
from exontally.core.stats import (
    METRIC_GAP_COUNT,
    METRIC_MAPPING_QUALITY,
    METRIC_SECONDARY_QUALITY,
    METRIC_WIDTH_BIN,
    METRICS,
    AlignmentStatsCollector,
)
from exontally.io.bam import AlignedRead
from exontally.utils.intervals import Interval


@pytest.fixture
def cut_points() -> CutPoints:
    return CutPoints(boundaries=[0, 100, 150, 200, 300, 400, math.inf], read_length=100)


@pytest.fixture
def reads() -> list[AlignedRead]:
    return [
        AlignedRead("Chr1", (Interval(150, 180),), 60, 0, -2),
        AlignedRead("Chr1", (Interval(250, 260),), 60, 0, 0),
        AlignedRead("Chr1", (Interval(180, 200), Interval(300, 320)), 60, 1, 0),
        AlignedRead("Chr1", (Interval(1050, 1100), Interval(1300, 1350)), 10, 1, -5),
        AlignedRead("Chr2", (Interval(600, 650),), 255, 0, None),
    ]


class TestAlignmentStatsCollector:
    """Tests for per-sample alignment statistics."""

    def test_histograms(self, cut_points: CutPoints, reads: list[AlignedRead]) -> None:
        collector = AlignmentStatsCollector(cut_points)
        for r in reads:
            collector.add(r)

        histograms = collector.histograms()
        assert set(histograms) == set(METRICS)
        assert histograms[METRIC_GAP_COUNT] == [(0, 3), (1, 2)]
        assert histograms[METRIC_MAPPING_QUALITY] == [(10, 1), (60, 3), (255, 1)]
        assert histograms[METRIC_WIDTH_BIN] == [
            ("(0,100]", 3),
            ("(100,150]", 1),
            ("(200,300]", 1),
        ]
        assert histograms[METRIC_SECONDARY_QUALITY] == [(-5, 1), (-2, 1), (0, 2)]

    def test_mass_conservation(self, cut_points: CutPoints, reads: list[AlignedRead]) -> None:
        """Gap, mapq and width tables each sum to the reads seen."""
        collector = AlignmentStatsCollector(cut_points)
        for r in reads:
            collector.add(r)

        histograms = collector.histograms()
        for metric in (METRIC_GAP_COUNT, METRIC_MAPPING_QUALITY, METRIC_WIDTH_BIN):
            assert sum(freq for _, freq in histograms[metric]) == collector.n_reads == 5

    def test_missing_quality_tag_excluded(self, cut_points: CutPoints) -> None:
        collector = AlignmentStatsCollector(cut_points)
        collector.add(AlignedRead("Chr1", (Interval(0, 10),), 60, 0, None))
        assert collector.histograms()[METRIC_SECONDARY_QUALITY] == []

    def test_empty(self, cut_points: CutPoints) -> None:
        histograms = AlignmentStatsCollector(cut_points).histograms()
        assert all(rows == [] for rows in histograms.values())

    def test_mixed_tag_types_sort(self, cut_points: CutPoints) -> None:
        collector = AlignmentStatsCollector(cut_points)
        for value in ("B", 3, "A", 1):
            collector.add(AlignedRead("Chr1", (Interval(0, 10),), 60, 0, value))
        values = [v for v, _ in collector.histograms()[METRIC_SECONDARY_QUALITY]]
        assert values == [1, 3, "A", "B"]
