from datetime import datetime, timezone

import pandas as pd
import pytest

from automation_engine.partitions.definitions import (
    UNPARTITIONED,
    UNPARTITIONED_KEY,
    DailyPartitionsDefinition,
    HourlyPartitionsDefinition,
    StaticPartitionsDefinition,
    same_definition,
    to_timestamp,
)

NOW = datetime(2024, 1, 3, 0, 5, tzinfo=timezone.utc)


def test_daily_partitions_only_include_complete_windows():
    daily = DailyPartitionsDefinition("2024-01-01")
    assert list(daily.get_partition_keys(NOW)) == ["2024-01-01", "2024-01-02"]


def test_end_offset_adds_the_open_window():
    daily = DailyPartitionsDefinition("2024-01-01", end_offset=1)
    assert list(daily.get_partition_keys(NOW))[-1] == "2024-01-03"


def test_hourly_keys_and_time_window():
    hourly = HourlyPartitionsDefinition("2024-01-01")
    keys = hourly.get_partition_keys(NOW)
    assert len(keys) == 48
    assert keys[0] == "2024-01-01-00:00"

    start, end = hourly.time_window("2024-01-01-05:00")
    assert start == pd.Timestamp("2024-01-01 05:00", tz="UTC")
    assert end == pd.Timestamp("2024-01-01 06:00", tz="UTC")


def test_time_window_space_needs_an_evaluation_time():
    with pytest.raises(ValueError):
        DailyPartitionsDefinition("2024-01-01").get_partition_keys(None)


def test_space_carries_window_starts():
    space = DailyPartitionsDefinition("2024-01-01").space(NOW)
    assert len(space.window_starts) == len(space) == 2
    assert space.position("2024-01-02") == 1


def test_static_and_unpartitioned_definitions():
    with pytest.raises(ValueError):
        StaticPartitionsDefinition(["x", "x"])
    assert tuple(UNPARTITIONED.get_partition_keys()) == (UNPARTITIONED_KEY,)
    assert not UNPARTITIONED.is_partitioned


def test_same_definition_compares_by_value():
    assert same_definition(DailyPartitionsDefinition("2024-01-01"), DailyPartitionsDefinition("2024-01-01"))
    assert not same_definition(DailyPartitionsDefinition("2024-01-01"), DailyPartitionsDefinition("2024-01-02"))
    assert not same_definition(StaticPartitionsDefinition(["a"]), UNPARTITIONED)


def test_to_timestamp_accepts_epoch_and_naive_values():
    assert to_timestamp(0) == pd.Timestamp("1970-01-01", tz="UTC")
    assert to_timestamp("2024-01-01").tzinfo is not None
