from datetime import datetime, timezone

import pytest

from automation_engine.partitions.definitions import (
    UNPARTITIONED,
    DailyPartitionsDefinition,
    HourlyPartitionsDefinition,
    StaticPartitionsDefinition,
)
from automation_engine.partitions.mappings import (
    AllPartitionMapping,
    IdentityPartitionMapping,
    LastPartitionMapping,
    TimeWindowPartitionMapping,
    build_partition_mapping,
    default_partition_mapping,
)
from automation_engine.partitions.subset import PartitionSubset

NOW = datetime(2024, 1, 3, 0, 5, tzinfo=timezone.utc)


def test_identity_mapping_drops_keys_missing_downstream():
    up = StaticPartitionsDefinition(["a", "b", "c"]).space()
    down = StaticPartitionsDefinition(["a", "b"]).space()
    mapped = IdentityPartitionMapping().map_to_downstream(
        PartitionSubset.from_keys("up", up, ["b", "c"]), "down", down
    )
    assert mapped.keys == {"b"}
    assert mapped.entity_key == "down"


def test_all_mapping_from_unpartitioned_parent():
    up = UNPARTITIONED.space()
    down = DailyPartitionsDefinition("2024-01-01").space(NOW)
    mapping = AllPartitionMapping()

    assert mapping.map_to_downstream(PartitionSubset.all("up", up), "down", down).keys == set(down.keys)
    assert mapping.map_to_downstream(PartitionSubset.empty("up", up), "down", down).is_empty
    assert mapping.map_to_upstream(PartitionSubset.all("down", down), "up", up).bool_value


def test_last_mapping_uses_latest_parent_partition():
    up = DailyPartitionsDefinition("2024-01-01").space(NOW)
    down = UNPARTITIONED.space()
    mapping = LastPartitionMapping()

    older_only = PartitionSubset.from_keys("up", up, ["2024-01-01"])
    assert mapping.map_to_downstream(older_only, "down", down).is_empty
    assert mapping.map_to_upstream(PartitionSubset.all("down", down), "up", up).keys == {"2024-01-02"}


def test_static_mapping_both_directions():
    up = StaticPartitionsDefinition(["us", "eu"]).space()
    down = StaticPartitionsDefinition(["us-east", "us-west", "eu-central"]).space()
    mapping = build_partition_mapping(
        "static", downstream_by_upstream={"us": ["us-east", "us-west"], "eu": "eu-central"}
    )

    assert mapping.map_to_downstream(PartitionSubset.from_keys("up", up, ["us"]), "down", down).keys == {
        "us-east",
        "us-west",
    }
    assert mapping.map_to_upstream(PartitionSubset.from_keys("down", down, ["eu-central"]), "up", up).keys == {"eu"}


def test_time_window_mapping_hourly_to_daily():
    hourly = HourlyPartitionsDefinition("2024-01-01").space(NOW)
    daily = DailyPartitionsDefinition("2024-01-01").space(NOW)
    mapping = TimeWindowPartitionMapping()

    up = mapping.map_to_upstream(PartitionSubset.from_keys("d", daily, ["2024-01-01"]), "h", hourly)
    assert len(up) == 24
    assert up.sorted_keys()[0] == "2024-01-01-00:00"
    assert up.sorted_keys()[-1] == "2024-01-01-23:00"

    down = mapping.map_to_downstream(PartitionSubset.from_keys("h", hourly, ["2024-01-01-05:00"]), "d", daily)
    assert down.keys == {"2024-01-01"}


def test_default_mapping_selection():
    daily = DailyPartitionsDefinition("2024-01-01")
    hourly = HourlyPartitionsDefinition("2024-01-01")
    assert isinstance(default_partition_mapping(daily, DailyPartitionsDefinition("2024-01-01")), IdentityPartitionMapping)
    assert isinstance(default_partition_mapping(hourly, daily), TimeWindowPartitionMapping)
    assert isinstance(default_partition_mapping(UNPARTITIONED, daily), AllPartitionMapping)


def test_unknown_mapping_name():
    with pytest.raises(ValueError, match="not found"):
        build_partition_mapping("diagonal")
