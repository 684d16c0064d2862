"""Tests for confidence-threshold resolution and teacher settings."""

import pytest

from app.errors import ResourceNotFoundError
from app.services.thresholds import ThresholdResolver, is_valid_threshold
from conftest import FakeSettingsStore, make_submission


def test_is_valid_threshold():
    assert is_valid_threshold(0.0)
    assert is_valid_threshold(1)
    assert not is_valid_threshold(1.01)
    assert not is_valid_threshold(float("nan"))
    assert not is_valid_threshold("0.5")


@pytest.mark.asyncio
async def test_teacher_override_wins():
    store = FakeSettingsStore(assignments={"asg_1": "teacher_1"}, teachers={"teacher_1": 0.9})
    resolver = ThresholdResolver(store, 0.75)

    assert await resolver.resolve(make_submission()) == 0.9


@pytest.mark.asyncio
async def test_configured_default_without_teacher_override():
    store = FakeSettingsStore(assignments={"asg_1": "teacher_1"}, teachers={"teacher_1": None})
    resolver = ThresholdResolver(store, 0.75)

    assert await resolver.resolve(make_submission()) == 0.75


@pytest.mark.asyncio
async def test_invalid_teacher_value_ignored():
    store = FakeSettingsStore(assignments={"asg_1": "teacher_1"}, teachers={"teacher_1": 1.5})
    resolver = ThresholdResolver(store, 0.75)

    assert await resolver.resolve(make_submission()) == 0.75


@pytest.mark.asyncio
async def test_invalid_configured_default_falls_back_to_safe_default():
    resolver = ThresholdResolver(FakeSettingsStore(), 1.7)

    assert await resolver.resolve(make_submission()) == 0.80


@pytest.mark.asyncio
async def test_get_teacher_threshold_reports_source():
    store = FakeSettingsStore(teachers={"teacher_1": 0.6, "teacher_2": None})
    resolver = ThresholdResolver(store, 0.8)

    overridden = await resolver.get_teacher_threshold("teacher_1")
    default = await resolver.get_teacher_threshold("teacher_2")

    assert (overridden.effective_threshold, overridden.source) == (0.6, "teacher_override")
    assert (default.effective_threshold, default.source, default.teacher_threshold) == (0.8, "default", None)


@pytest.mark.asyncio
async def test_get_unknown_teacher():
    with pytest.raises(ResourceNotFoundError):
        await ThresholdResolver(FakeSettingsStore(), 0.8).get_teacher_threshold("nobody")


@pytest.mark.asyncio
async def test_update_and_clear_teacher_threshold():
    store = FakeSettingsStore(teachers={"teacher_1": None})
    resolver = ThresholdResolver(store, 0.8)

    updated = await resolver.update_teacher_threshold("teacher_1", 0.65)
    assert updated.source == "teacher_override"
    assert store.teachers["teacher_1"] == 0.65

    cleared = await resolver.update_teacher_threshold("teacher_1", None)
    assert cleared.source == "default"
    assert cleared.effective_threshold == 0.8


@pytest.mark.asyncio
async def test_update_rejects_invalid_threshold():
    store = FakeSettingsStore(teachers={"teacher_1": None})

    with pytest.raises(ValueError):
        await ThresholdResolver(store, 0.8).update_teacher_threshold("teacher_1", 2.0)
    assert store.teachers["teacher_1"] is None
