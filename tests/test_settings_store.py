"""Tests for AI settings invariants and the config repositories."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from conftest import make_config

from bookmark_curator.errors import ConfigNotFoundError, ConfigValidationError
from bookmark_curator.models import AiConfigGroup
from bookmark_curator.settings_store import (
    AiSettings,
    InMemoryConfigRepository,
    JsonFileConfigRepository,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_first_config_becomes_active_and_names_are_unique() -> None:
    settings = AiSettings()
    first = settings.add_config(make_config("Primary"))
    if settings.active_config_id != first.id:
        raise AssertionError("First config should become active")
    second = settings.add_config(make_config("Secondary"))
    if settings.active_config_id != first.id:
        raise AssertionError("Later non-default configs leave the active one alone")
    flagged = settings.add_config(make_config("Flagged", is_default=True))
    if settings.active_config() is not flagged:
        raise AssertionError("A default config becomes active")

    with pytest.raises(ConfigValidationError, match="already exists"):
        settings.add_config(make_config("primary"))
    with pytest.raises(ConfigValidationError):
        settings.update_config(second.id, name="PRIMARY")


def test_update_config_keeps_identity() -> None:
    settings = AiSettings()
    config = settings.add_config(make_config("Editable"))
    updated = settings.update_config(config.id, model_id="gpt-next", base_url="  ")
    if (updated.id, updated.created_at) != (config.id, config.created_at):
        raise AssertionError("Identity fields survive updates")
    if updated.model_id != "gpt-next" or updated.base_url is not None:
        msg = f"Unexpected update result: {updated}"
        raise AssertionError(msg)
    if settings.get_config(config.id) is not updated:
        raise AssertionError("Updated config replaces the stored one")

    with pytest.raises(ConfigValidationError, match="id"):
        settings.update_config(config.id, id="other")
    with pytest.raises(ConfigValidationError):
        settings.update_config(config.id, name="   ")
    with pytest.raises(ConfigNotFoundError):
        settings.update_config("missing", model_id="x")


def test_delete_config_cascades_into_groups(two_lane_settings: AiSettings) -> None:
    alpha = next(c for c in two_lane_settings.configs if c.name == "alpha")
    group = two_lane_settings.groups[0]
    two_lane_settings.delete_config(alpha.id)

    if alpha.id in two_lane_settings.groups[0].ai_config_ids:
        raise AssertionError("Deleted config must leave every group")
    if two_lane_settings.groups[0].id != group.id:
        raise AssertionError("Group itself survives the cascade")
    if two_lane_settings.active_config_id is not None:
        raise AssertionError("Deleting the active config clears the selection")
    with pytest.raises(ConfigNotFoundError):
        two_lane_settings.get_config(alpha.id)


def test_group_validation(two_lane_settings: AiSettings) -> None:
    known = [c.id for c in two_lane_settings.configs]
    with pytest.raises(ConfigValidationError, match="name"):
        two_lane_settings.add_group(AiConfigGroup(name="  ", ai_config_ids=known))
    with pytest.raises(ConfigValidationError, match="at least one"):
        two_lane_settings.add_group(AiConfigGroup(name="empty"))
    with pytest.raises(ConfigValidationError, match="unknown"):
        two_lane_settings.add_group(AiConfigGroup(name="ghost", ai_config_ids=["nope"]))

    group = two_lane_settings.groups[0]
    updated = two_lane_settings.update_group(group.id, ai_config_ids=[known[1], known[1], known[0]])
    if updated.ai_config_ids != [known[1], known[0]]:
        msg = f"Members are de-duplicated in order: {updated.ai_config_ids}"
        raise AssertionError(msg)
    if two_lane_settings.find_group_by_name("LANES") is not updated:
        raise AssertionError("Group lookup by name is case-insensitive")

    two_lane_settings.delete_group(group.id)
    if two_lane_settings.active_group_id is not None or two_lane_settings.groups:
        raise AssertionError("Deleting the active group clears the selection")
    with pytest.raises(ConfigNotFoundError):
        two_lane_settings.set_active_group(group.id)


def test_in_memory_repository_isolates_snapshots(two_lane_settings: AiSettings) -> None:
    repository = InMemoryConfigRepository(two_lane_settings)
    loaded = repository.load()
    loaded.delete_config(loaded.configs[0].id)
    if len(repository.load().configs) != 2:
        raise AssertionError("Mutating a loaded snapshot must not touch the store")

    seen: list[AiSettings] = []
    unsubscribe = repository.subscribe(seen.append)
    repository.save(loaded)
    unsubscribe()
    repository.save(two_lane_settings)
    if len(seen) != 1 or len(seen[0].configs) != 1:
        msg = f"Listener should see exactly the first save: {seen}"
        raise AssertionError(msg)


def test_json_repository_round_trip(tmp_path: Path, two_lane_settings: AiSettings) -> None:
    repository = JsonFileConfigRepository(tmp_path / "nested" / "ai_settings.json")
    if repository.load().configs:
        raise AssertionError("A missing file yields empty settings")

    repository.save(two_lane_settings)
    restored = repository.load()
    if [c.name for c in restored.configs] != ["alpha", "beta"]:
        raise AssertionError("Configs should survive a save/load cycle")
    if restored.active_group_id != two_lane_settings.active_group_id:
        raise AssertionError("Active group should be persisted")
    if restored.configs[0].created_at != two_lane_settings.configs[0].created_at:
        raise AssertionError("Timestamps should be persisted")

    repository.path.write_text('{"configs": [{"name": 3}]}', encoding="utf-8")
    with pytest.raises(ConfigValidationError):
        repository.load()
