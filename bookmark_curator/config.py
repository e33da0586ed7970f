"""Global configuration constants for bookmark curator."""

from __future__ import annotations

# Separator between folder names in a category path ("Work > Projects > Q3").
CATEGORY_DELIMITER: str = " > "

# Maximum folder nesting depth requested from the model.
DEFAULT_MAX_DEPTH: int = 3

# Number of bookmarks sent to the model in one request.
DEFAULT_BATCH_SIZE: int = 10

# Suggestions below this confidence are dropped from the plan.
DEFAULT_CONFIDENCE_THRESHOLD: float = 0.7

# Suggestions at or above this confidence are pre-selected for review.
AUTO_SELECT_CONFIDENCE: float = 0.8

DEFAULT_TEMPERATURE: float = 0.7
DEFAULT_MAX_TOKENS: int = 1000

# Transport settings shared by every provider adapter.
REQUEST_TIMEOUT_SECONDS: float = 30.0
TRANSPORT_RETRIES: int = 3
TRANSPORT_BACKOFF_SECONDS: float = 1.0

ANTHROPIC_API_VERSION: str = "2023-06-01"
AZURE_API_VERSION: str = "2024-02-01"
OPENROUTER_REFERER: str = "app://bookmark-curator"
OPENROUTER_TITLE: str = "Bookmark Curator"

PREDEFINED_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1/chat/completions",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/models/",
    "anthropic": "https://api.anthropic.com/v1/messages",
    "grok": "https://api.x.ai/v1/chat/completions",
    "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    "azure": (
        "https://your-resource-name.openai.azure.com/openai/deployments/"
        "your-deployment-name/chat/completions"
    ),
    "ollama": "http://localhost:11434/api/generate",
    "custom": "",
}

# Environment variables consulted when a config carries no API key.
API_KEY_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "grok": "XAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
}

PROVIDER_DEFINITIONS: dict[str, dict[str, object]] = {
    "openai": {
        "name": "OpenAI",
        "default_model_id": "gpt-4.1-mini",
        "requires_api_key": True,
        "requires_base_url": False,
    },
    "gemini": {
        "name": "Google Gemini",
        "default_model_id": "gemini-1.5-flash",
        "requires_api_key": True,
        "requires_base_url": False,
    },
    "anthropic": {
        "name": "Anthropic Claude",
        "default_model_id": "claude-3-haiku-20240307",
        "requires_api_key": True,
        "requires_base_url": False,
    },
    "grok": {
        "name": "Grok (xAI)",
        "default_model_id": "grok-beta",
        "requires_api_key": True,
        "requires_base_url": False,
    },
    "openrouter": {
        "name": "OpenRouter",
        "default_model_id": "anthropic/claude-3-haiku",
        "requires_api_key": True,
        "requires_base_url": False,
    },
    "azure": {
        "name": "Azure OpenAI",
        "default_model_id": "gpt-35-turbo",
        "requires_api_key": True,
        "requires_base_url": True,
    },
    "ollama": {
        "name": "Local Ollama",
        "default_model_id": "llama2",
        "requires_api_key": False,
        "requires_base_url": True,
    },
    "custom": {
        "name": "Custom URL",
        "default_model_id": "",
        "requires_api_key": True,
        "requires_base_url": True,
    },
}
