"""
Tests for the Zone State Tracker module
"""

import pytest

from ipmifan.control.zones import ZoneStateTracker

@pytest.fixture
def tracker():
    """Create a tracker for the reference zones"""
    return ZoneStateTracker(["cpu", "peripheral"])

def test_initial_state_unknown(tracker):
    """Test zones start unknown and always need a first write"""
    assert tracker.zones == ("cpu", "peripheral")
    assert tracker.current("cpu") is None
    for duty in (0, 15, 100):
        assert tracker.should_write("cpu", duty)
        assert tracker.should_write("peripheral", duty)

def test_should_write_is_idempotent(tracker):
    """Test repeated queries without a write give the same answer"""
    assert tracker.should_write("cpu", 15) == tracker.should_write("cpu", 15)
    tracker.record_written("cpu", 15)
    assert tracker.should_write("cpu", 15) == tracker.should_write("cpu", 15)
    assert tracker.should_write("cpu", 60) == tracker.should_write("cpu", 60)

def test_record_written_suppresses_same_duty(tracker):
    """Test a recorded duty is not written again"""
    tracker.record_written("cpu", 15)
    assert not tracker.should_write("cpu", 15)
    assert tracker.should_write("cpu", 60)
    assert tracker.current("cpu") == 15

def test_zones_are_independent(tracker):
    """Test one zone's record does not affect another"""
    tracker.record_written("cpu", 60)
    assert not tracker.should_write("cpu", 60)
    assert tracker.should_write("peripheral", 60)
    assert tracker.snapshot() == {"cpu": 60, "peripheral": None}

def test_unrecorded_failure_keeps_previous(tracker):
    """Test a failed write (no record) leaves the zone due for a retry"""
    tracker.record_written("cpu", 15)
    # Write of 60% failed, so nothing is recorded
    assert tracker.should_write("cpu", 60)
    assert tracker.current("cpu") == 15

def test_unknown_zone(tracker):
    """Test unknown zones are rejected"""
    with pytest.raises(KeyError):
        tracker.should_write("gpu", 50)
    with pytest.raises(KeyError):
        tracker.record_written("gpu", 50)

def test_requires_zones():
    """Test an empty zone set is rejected"""
    with pytest.raises(ValueError):
        ZoneStateTracker([])
