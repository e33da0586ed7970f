"""Data models for the bookmark organisation pipeline."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union, get_args

from attrs import Factory, define
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    field_validator,
    model_validator,
)

from .config import (
    AZURE_API_VERSION,
    ANTHROPIC_API_VERSION,
    CATEGORY_DELIMITER,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    OPENROUTER_REFERER,
    OPENROUTER_TITLE,
)

ProviderName = Literal[
    "openai", "gemini", "anthropic", "openrouter", "azure", "grok", "ollama", "custom",
]
PROVIDER_NAMES: tuple[str, ...] = get_args(ProviderName)

LogLevel = Literal["info", "warning", "error", "success"]
MergeStrategy = Literal["keep_primary", "keep_newest", "manual"]
DuplicateHandling = Literal["merge", "keep_all"]


def new_id() -> str:
    """Return a fresh opaque identifier."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def split_category(category: str) -> list[str]:
    """Split a category path on the full delimiter, dropping blanks.

    A bare ``>`` inside a folder name (``"C>D"``) stays part of that name.
    """
    return [part.strip() for part in category.split(CATEGORY_DELIMITER) if part.strip()]


def join_category(parts: list[str] | tuple[str, ...]) -> str:
    """Join folder names into a category path."""
    return CATEGORY_DELIMITER.join(parts)


# --- Bookmark tree -------------------------------------------------------------------------


@define(slots=True)
class Bookmark:
    """A single bookmark inside the tree."""

    id: str
    title: str
    url: str
    tags: list[str] = Factory(list)
    add_date: str | None = None
    icon: str | None = None

    def to_model(self) -> BookmarkModel:
        """Convert the bookmark into a serialisable pydantic model."""
        return BookmarkModel(
            id=self.id,
            title=self.title,
            url=self.url,
            tags=list(self.tags),
            add_date=self.add_date,
            icon=self.icon,
        )


@define(slots=True)
class Folder:
    """A folder owning an ordered list of child nodes."""

    id: str
    name: str
    children: list[BookmarkNode] = Factory(list)
    add_date: str | None = None
    last_modified: str | None = None

    def to_model(self) -> FolderModel:
        """Convert the folder (recursively) into a serialisable pydantic model."""
        return FolderModel(
            id=self.id,
            name=self.name,
            children=[child.to_model() for child in self.children],
            add_date=self.add_date,
            last_modified=self.last_modified,
        )


BookmarkNode = Union[Bookmark, Folder]


class BookmarkModel(BaseModel):
    """Pydantic model for a bookmark node."""

    type: Literal["bookmark"] = "bookmark"
    id: str
    title: str = ""
    url: str
    tags: list[str] = Field(default_factory=list)
    add_date: str | None = None
    icon: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value: list[str] | None) -> list[str]:
        return [str(tag).strip() for tag in value if str(tag).strip()] if value else []

    def to_node(self) -> Bookmark:
        """Create a tree bookmark from the validated model."""
        return Bookmark(
            id=self.id,
            title=self.title,
            url=self.url,
            tags=list(self.tags),
            add_date=self.add_date,
            icon=self.icon,
        )


class FolderModel(BaseModel):
    """Pydantic model for a folder node."""

    type: Literal["folder"] = "folder"
    id: str
    name: str
    children: list[NodeModel] = Field(default_factory=list)
    add_date: str | None = None
    last_modified: str | None = None

    def to_node(self) -> Folder:
        """Create a tree folder (recursively) from the validated model."""
        return Folder(
            id=self.id,
            name=self.name,
            children=[child.to_node() for child in self.children],
            add_date=self.add_date,
            last_modified=self.last_modified,
        )


NodeModel = Annotated[Union[BookmarkModel, FolderModel], Field(discriminator="type")]
FolderModel.model_rebuild()


class BookmarkTreeModel(RootModel[list[NodeModel]]):
    """Root list model for a whole bookmark tree."""

    @classmethod
    def from_nodes(cls, nodes: list[BookmarkNode]) -> BookmarkTreeModel:
        """Build the serialisable form of a tree."""
        return cls([node.to_model() for node in nodes])

    def to_nodes(self) -> list[BookmarkNode]:
        """Convert the root list back into tree nodes."""
        return [model.to_node() for model in self.root]


@dataclass(slots=True)
class FlatBookmark:
    """A bookmark lifted out of the tree together with its folder path."""

    bookmark: Bookmark
    path: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.bookmark.id

    @property
    def title(self) -> str:
        return self.bookmark.title

    @property
    def url(self) -> str:
        return self.bookmark.url

    @property
    def current_category(self) -> str:
        """Folder path joined with the category delimiter (empty at the root)."""
        return join_category(self.path)


# --- AI configuration ----------------------------------------------------------------------


class AzureMetadata(BaseModel):
    """Azure OpenAI deployment options."""

    kind: Literal["azure"] = "azure"
    api_version: str = AZURE_API_VERSION
    deployment: str | None = None


class OpenRouterMetadata(BaseModel):
    """Attribution headers OpenRouter expects."""

    kind: Literal["openrouter"] = "openrouter"
    referer: str = OPENROUTER_REFERER
    title: str = OPENROUTER_TITLE


class AnthropicMetadata(BaseModel):
    """Anthropic messages API options."""

    kind: Literal["anthropic"] = "anthropic"
    api_version: str = ANTHROPIC_API_VERSION


class GenericMetadata(BaseModel):
    """Extra HTTP headers for any provider."""

    kind: Literal["generic"] = "generic"
    extra_headers: dict[str, str] = Field(default_factory=dict)


ProviderMetadata = Annotated[
    Union[AzureMetadata, OpenRouterMetadata, AnthropicMetadata, GenericMetadata],
    Field(discriminator="kind"),
]


class AiConfig(BaseModel):
    """One configured model endpoint."""

    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(default_factory=new_id)
    name: str
    provider: ProviderName
    base_url: str | None = None
    api_key: str | None = None
    model_id: str
    metadata: ProviderMetadata | None = None
    is_default: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("name", "model_id")
    @classmethod
    def _require_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("base_url", "api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = str(value).strip()
        return stripped or None

    @model_validator(mode="after")
    def _check_metadata_kind(self) -> AiConfig:
        if self.metadata is None or self.metadata.kind == "generic":
            return self
        allowed = {"azure": {"azure"}, "openrouter": {"openrouter"}, "anthropic": {"anthropic"}}
        if self.provider not in allowed.get(self.metadata.kind, set()):
            msg = f"{self.metadata.kind} metadata cannot be attached to a {self.provider} config"
            raise ValueError(msg)
        return self

    def extra_headers(self) -> dict[str, str]:
        """Headers declared through generic metadata."""
        if isinstance(self.metadata, GenericMetadata):
            return dict(self.metadata.extra_headers)
        return {}


class AiConfigGroup(BaseModel):
    """Ordered set of configs used as parallel lanes for batch dispatch."""

    id: str = Field(default_factory=new_id)
    name: str
    ai_config_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("ai_config_ids")
    @classmethod
    def _dedupe_members(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


# --- Organisation plan ---------------------------------------------------------------------


class OrganizationSuggestion(BaseModel):
    """Proposed destination category for one bookmark."""

    model_config = ConfigDict(frozen=True)

    bookmark_id: str
    suggested_category: str
    confidence: float = 0.0
    reasoning: str = ""
    suggested_tags: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: object) -> float:
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        if math.isnan(number):
            return 0.0
        return min(1.0, max(0.0, number))

    @field_validator("suggested_tags", mode="before")
    @classmethod
    def _clean_tags(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(tag).strip() for tag in value if str(tag).strip()]


class OrganizationConflict(BaseModel):
    """Advisory record of a suggestion that differs from the current location."""

    model_config = ConfigDict(frozen=True)

    bookmark_id: str
    current_category: str
    suggested_category: str
    confidence: float


class DuplicateGroup(BaseModel):
    """A retained bookmark plus the bookmarks considered its duplicates."""

    model_config = ConfigDict(frozen=True)

    primary_bookmark: BookmarkModel
    duplicates: list[BookmarkModel]
    merge_strategy: MergeStrategy = "keep_primary"

    @property
    def duplicate_ids(self) -> list[str]:
        return [duplicate.id for duplicate in self.duplicates]


class PlanMetadata(BaseModel):
    """Counters describing how much of the input a plan covers."""

    model_config = ConfigDict(frozen=True)

    total_bookmarks: int
    processed_bookmarks: int
    total_batches: int = 0
    processed_batches: int = 0
    failed_batches: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    ai_configs_used: list[str] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """True when every batch settled without error."""
        return self.failed_batches == 0 and self.processed_batches == self.total_batches


class OrganizationPlan(BaseModel):
    """Reviewable output of one organisation run."""

    model_config = ConfigDict(frozen=True)

    suggestions: list[OrganizationSuggestion] = Field(default_factory=list)
    conflicts: list[OrganizationConflict] = Field(default_factory=list)
    duplicates: list[DuplicateGroup] = Field(default_factory=list)
    new_folders: list[str] = Field(default_factory=list)
    metadata: PlanMetadata


class ProcessingLog(BaseModel):
    """One entry of the append-only run log."""

    id: str = Field(default_factory=new_id)
    level: LogLevel
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


class LLMSuggestionEntryModel(BaseModel):
    """A single entry of the model's JSON reply, before batch cross-checks."""

    bookmark_id: str = Field(validation_alias=AliasChoices("bookmarkId", "bookmark_id", "id"))
    suggested_category: str = Field(
        validation_alias=AliasChoices("suggestedCategory", "suggested_category", "category"),
    )
    confidence: object = 0.0
    reasoning: str = ""
    tags: list[str] = Field(default_factory=list)

    @field_validator("bookmark_id", "suggested_category", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        text = "" if value is None else str(value).strip()
        if not text:
            msg = "must not be blank"
            raise ValueError(msg)
        return text

    @field_validator("reasoning", mode="before")
    @classmethod
    def _coerce_reasoning(cls, value: object) -> str:
        return "" if value is None else str(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(tag).strip() for tag in value if str(tag).strip()]

    def to_suggestion(self) -> OrganizationSuggestion:
        """Convert the raw entry into a clamped suggestion."""
        return OrganizationSuggestion(
            bookmark_id=self.bookmark_id,
            suggested_category=self.suggested_category,
            confidence=self.confidence,
            reasoning=self.reasoning,
            suggested_tags=self.tags,
        )


# --- Run options and state -----------------------------------------------------------------


class OrganizeOptions(BaseModel):
    """Knobs for one organisation run."""

    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=1)
    create_hierarchy: bool = True
    detect_duplicates: bool = True
    generate_tags: bool = True
    confidence_threshold: float = Field(default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    group_id: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS


class ApplyOptions(BaseModel):
    """Knobs for applying an approved plan."""

    handle_duplicates: DuplicateHandling = "merge"


class OperationState(str, Enum):
    """Lifecycle of an organiser run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class BatchProgress:
    """Progress counted in batches, reported after each batch settles."""

    processed: int
    total: int
