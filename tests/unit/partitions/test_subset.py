import pytest

from automation_engine.partitions.definitions import UNPARTITIONED, StaticPartitionsDefinition
from automation_engine.partitions.subset import PartitionSubset

DEF = StaticPartitionsDefinition(["p1", "p2", "p3", "p4"])


def _subset(space, *keys):
    return PartitionSubset.from_keys("a", space, keys)


def test_set_algebra_on_static_space():
    space = DEF.space()
    left = _subset(space, "p1", "p2")
    right = _subset(space, "p2", "p3")

    assert (left | right).keys == {"p1", "p2", "p3"}
    assert (left & right).keys == {"p2"}
    assert (left - right).keys == {"p1"}
    assert left.complement().keys == {"p3", "p4"}
    assert left.is_subset_of(left | right)


def test_operations_return_new_subsets():
    space = DEF.space()
    left = _subset(space, "p1")
    merged = left.union(_subset(space, "p2"))
    assert left.keys == {"p1"}
    assert merged.keys == {"p1", "p2"}


def test_subsets_from_different_spaces_do_not_mix():
    a = _subset(DEF.space(), "p1")
    b = _subset(DEF.space(), "p1")
    with pytest.raises(ValueError):
        a.union(b)


def test_equality_is_set_equality():
    space = DEF.space()
    assert _subset(space, "p2", "p1") == _subset(space, "p1", "p2")
    assert _subset(space, "p1") != _subset(space, "p2")
    assert hash(_subset(space, "p1", "p2")) == hash(_subset(space, "p2", "p1"))


def test_from_keys_drops_unknown_keys_unless_strict():
    space = DEF.space()
    assert _subset(space, "p1", "zz").keys == {"p1"}
    with pytest.raises(ValueError, match="do not exist"):
        PartitionSubset.from_keys("a", space, ["zz"], strict=True)


def test_sorted_keys_follow_definition_order():
    space = DEF.space()
    assert _subset(space, "p4", "p1", "p3").sorted_keys() == ["p1", "p3", "p4"]


def test_unpartitioned_subset_is_a_boolean():
    space = UNPARTITIONED.space()
    yes = PartitionSubset.from_bool("u", space, True)
    no = PartitionSubset.empty("u", space)

    assert yes.bool_value is True
    assert no.bool_value is False
    assert no.is_empty
    assert yes.complement() == no
    assert yes.to_dict() == {"entity": "u", "requested": True}


def test_bool_value_rejected_for_partitioned_entities():
    with pytest.raises(TypeError):
        _subset(DEF.space(), "p1").bool_value
