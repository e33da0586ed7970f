"""AI configuration settings and the repositories that persist them."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigNotFoundError, ConfigValidationError
from .models import AiConfig, AiConfigGroup

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from pathlib import Path

LOGGER = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class AiSettings(BaseModel):
    """Snapshot of every configured provider, group and active selection."""

    configs: list[AiConfig] = Field(default_factory=list)
    groups: list[AiConfigGroup] = Field(default_factory=list)
    active_config_id: str | None = None
    active_group_id: str | None = None

    # --- lookups -------------------------------------------------------------------------

    def get_config(self, config_id: str) -> AiConfig:
        for config in self.configs:
            if config.id == config_id:
                return config
        msg = f"AiConfig with id {config_id} not found"
        raise ConfigNotFoundError(msg)

    def get_group(self, group_id: str) -> AiConfigGroup:
        for group in self.groups:
            if group.id == group_id:
                return group
        msg = f"AiConfigGroup with id {group_id} not found"
        raise ConfigNotFoundError(msg)

    def active_config(self) -> AiConfig | None:
        if self.active_config_id is None:
            return None
        return next((c for c in self.configs if c.id == self.active_config_id), None)

    def find_group_by_name(self, name: str) -> AiConfigGroup | None:
        wanted = name.strip().lower()
        return next((g for g in self.groups if g.name.lower() == wanted), None)

    # --- configs -------------------------------------------------------------------------

    def _check_unique_name(self, name: str, exclude_id: str | None = None) -> None:
        wanted = name.strip().lower()
        for config in self.configs:
            if config.id != exclude_id and config.name.lower() == wanted:
                msg = f"A configuration named '{name}' already exists"
                raise ConfigValidationError(msg)

    def add_config(self, config: AiConfig) -> AiConfig:
        """Register a config; the first one, or one flagged default, becomes active."""
        if any(existing.id == config.id for existing in self.configs):
            msg = f"A configuration with id {config.id} already exists"
            raise ConfigValidationError(msg)
        self._check_unique_name(config.name)
        is_first = not self.configs
        self.configs.append(config)
        if is_first or config.is_default:
            self.active_config_id = config.id
        LOGGER.info("Added AI config %s (%s)", config.name, config.provider)
        return config

    def update_config(self, config_id: str, **changes: Any) -> AiConfig:
        """Replace mutable fields of a config; its id and creation time stay fixed."""
        blocked = _IMMUTABLE_FIELDS.intersection(changes)
        if blocked:
            msg = f"Cannot change {', '.join(sorted(blocked))} of a configuration"
            raise ConfigValidationError(msg)
        current = self.get_config(config_id)
        if "name" in changes:
            self._check_unique_name(str(changes["name"]), exclude_id=config_id)
        try:
            updated = AiConfig.model_validate({**current.model_dump(), **changes})
        except ValidationError as exc:
            msg = f"Invalid configuration update: {exc}"
            raise ConfigValidationError(msg) from exc
        index = self.configs.index(current)
        self.configs[index] = updated
        return updated

    def delete_config(self, config_id: str) -> None:
        """Remove a config and every group membership that referenced it."""
        config = self.get_config(config_id)
        self.configs.remove(config)
        for group in self.groups:
            if config_id in group.ai_config_ids:
                group.ai_config_ids = [cid for cid in group.ai_config_ids if cid != config_id]
        if self.active_config_id == config_id:
            self.active_config_id = None
        LOGGER.info("Deleted AI config %s", config.name)

    def set_active_config(self, config_id: str | None) -> None:
        if config_id is not None:
            self.get_config(config_id)
        self.active_config_id = config_id

    # --- groups --------------------------------------------------------------------------

    def _validate_group(self, group: AiConfigGroup) -> None:
        if not group.name.strip():
            msg = "Group name is required"
            raise ConfigValidationError(msg)
        if not group.ai_config_ids:
            msg = "A group needs at least one AI configuration"
            raise ConfigValidationError(msg)
        known = {config.id for config in self.configs}
        unknown = [cid for cid in group.ai_config_ids if cid not in known]
        if unknown:
            msg = f"Group references unknown configurations: {', '.join(unknown)}"
            raise ConfigValidationError(msg)

    def add_group(self, group: AiConfigGroup) -> AiConfigGroup:
        self._validate_group(group)
        self.groups.append(group)
        LOGGER.info("Added AI config group %s with %d lanes", group.name, len(group.ai_config_ids))
        return group

    def update_group(
        self, group_id: str, *, name: str | None = None, ai_config_ids: list[str] | None = None,
    ) -> AiConfigGroup:
        current = self.get_group(group_id)
        updated = current.model_copy(
            update={
                "name": current.name if name is None else name.strip(),
                "ai_config_ids": list(dict.fromkeys(
                    current.ai_config_ids if ai_config_ids is None else ai_config_ids,
                )),
            },
        )
        self._validate_group(updated)
        self.groups[self.groups.index(current)] = updated
        return updated

    def delete_group(self, group_id: str) -> None:
        group = self.get_group(group_id)
        self.groups.remove(group)
        if self.active_group_id == group_id:
            self.active_group_id = None

    def set_active_group(self, group_id: str | None) -> None:
        if group_id is not None:
            self.get_group(group_id)
        self.active_group_id = group_id


class ConfigRepository(Protocol):
    """Load/save/subscribe access to persisted AI settings."""

    def load(self) -> AiSettings: ...

    def save(self, settings: AiSettings) -> None: ...

    def subscribe(self, callback: Callable[[AiSettings], None]) -> Callable[[], None]: ...


class _SubscriberMixin:
    def __init__(self) -> None:
        self._listeners: list[Callable[[AiSettings], None]] = []

    def subscribe(self, callback: Callable[[AiSettings], None]) -> Callable[[], None]:
        """Register ``callback`` for saves; the returned function unsubscribes it."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _notify(self, settings: AiSettings) -> None:
        for listener in list(self._listeners):
            listener(settings.model_copy(deep=True))


class InMemoryConfigRepository(_SubscriberMixin):
    """Settings held in process memory (tests, embedding)."""

    def __init__(self, settings: AiSettings | None = None) -> None:
        super().__init__()
        self._settings = settings.model_copy(deep=True) if settings else AiSettings()

    def load(self) -> AiSettings:
        return self._settings.model_copy(deep=True)

    def save(self, settings: AiSettings) -> None:
        self._settings = settings.model_copy(deep=True)
        self._notify(self._settings)


class JsonFileConfigRepository(_SubscriberMixin):
    """Settings persisted as a JSON document on disk."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AiSettings:
        """Read the settings file; a missing file yields empty settings."""
        if not self._path.exists():
            LOGGER.debug("No settings file at %s; starting empty", self._path)
            return AiSettings()
        raw_text = self._path.read_text(encoding="utf-8")
        try:
            return AiSettings.model_validate_json(raw_text)
        except ValidationError as exc:
            msg = f"Invalid AI settings file {self._path}: {exc}"
            raise ConfigValidationError(msg) from exc

    def save(self, settings: AiSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = settings.model_dump(mode="json")
        self._path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8",
        )
        LOGGER.info("Wrote %d AI configs to %s", len(settings.configs), self._path)
        self._notify(settings)
