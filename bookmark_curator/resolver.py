"""Resolve an AI configuration into a ready-to-use provider adapter."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .config import PREDEFINED_BASE_URLS
from .errors import ConfigNotFoundError
from .providers import (
    AnthropicModel,
    GeminiModel,
    GenerativeModel,
    OllamaModel,
    OpenAICompatibleModel,
    OpenRouterModel,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    import httpx

    from .models import AiConfig, AiConfigGroup
    from .transport import RetryPolicy

LOGGER = logging.getLogger(__name__)


def select_config(
    configs: Sequence[AiConfig],
    active_id: str | None = None,
    specific_id: str | None = None,
) -> AiConfig:
    """Pick a config: explicit id, then active id, then the default, then the first."""
    default = next((cfg for cfg in configs if cfg.is_default), None)
    id_to_use = specific_id
    if id_to_use is None:
        id_to_use = active_id
    if id_to_use is None and default is not None:
        id_to_use = default.id
    if id_to_use is None and configs:
        id_to_use = configs[0].id
    if id_to_use is None:
        msg = "No AiConfig available"
        raise ConfigNotFoundError(msg)

    config = next((cfg for cfg in configs if cfg.id == id_to_use), None)
    if config is None:
        msg = f"AiConfig with id {id_to_use} not found"
        raise ConfigNotFoundError(msg)
    return config


def adapter_class(provider: str) -> type[GenerativeModel]:
    """Map a provider name onto its adapter implementation."""
    match provider:
        case "openai" | "azure" | "grok" | "custom":
            return OpenAICompatibleModel
        case "openrouter":
            return OpenRouterModel
        case "anthropic":
            return AnthropicModel
        case "gemini":
            return GeminiModel
        case "ollama":
            return OllamaModel
    msg = f"Unsupported provider: {provider}"
    raise ConfigNotFoundError(msg)


def build_model(
    config: AiConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    policy: RetryPolicy | None = None,
) -> GenerativeModel:
    """Construct the adapter for ``config``, filling in the provider's default endpoint.

    The default endpoint is written back onto ``config``; repeating the call is a no-op.
    """
    if not config.base_url:
        config.base_url = PREDEFINED_BASE_URLS.get(config.provider) or None
    model = adapter_class(config.provider)(config, http_client=http_client, policy=policy)
    LOGGER.debug("Resolved config %s (%s) to %s", config.name, config.provider, type(model).__name__)
    return model


def get_generative_model(
    configs: Sequence[AiConfig],
    active_id: str | None = None,
    specific_id: str | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    policy: RetryPolicy | None = None,
) -> GenerativeModel:
    """Resolve a selection against ``configs`` and build its adapter."""
    config = select_config(configs, active_id, specific_id)
    return build_model(config, http_client=http_client, policy=policy)


def resolve_group(
    groups: Sequence[AiConfigGroup],
    configs: Sequence[AiConfig],
    group_id: str | None,
) -> list[AiConfig]:
    """Return the member configs of a group in lane order.

    Members whose config no longer exists are skipped; an unknown group or one with
    no resolvable member raises :class:`ConfigNotFoundError`.
    """
    if not group_id:
        msg = "No AI config group selected"
        raise ConfigNotFoundError(msg)
    group = next((grp for grp in groups if grp.id == group_id), None)
    if group is None:
        msg = f"AiConfigGroup with id {group_id} not found"
        raise ConfigNotFoundError(msg)

    by_id = {cfg.id: cfg for cfg in configs}
    members: list[AiConfig] = []
    for config_id in group.ai_config_ids:
        config = by_id.get(config_id)
        if config is None:
            LOGGER.warning("Group %s references missing config %s", group.name, config_id)
            continue
        members.append(config)
    if not members:
        msg = f"AiConfigGroup '{group.name}' has no configurations"
        raise ConfigNotFoundError(msg)
    return members
