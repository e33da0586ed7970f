"""Batch organisation engine: concurrent LLM categorisation of a bookmark tree."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from .duplicates import detect_duplicates
from .errors import ErrorCode, OperationCancelledError, OrganiserStateError, ProviderError
from .models import (
    BatchProgress,
    OperationState,
    OrganizationPlan,
    OrganizeOptions,
    PlanMetadata,
    ProcessingLog,
)
from .prompts import build_batch_organize_prompt
from .providers import GenerationOptions
from .resolver import build_model, resolve_group
from .response_parser import parse_batch_response
from .structure import (
    extract_bookmarks,
    generate_folder_structure,
    identify_conflicts,
    serialize_folder_structure,
)
from .transport import CancellationToken

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Sequence

    import httpx

    from .models import (
        AiConfig,
        BookmarkNode,
        DuplicateGroup,
        FlatBookmark,
        LogLevel,
        OrganizationSuggestion,
    )
    from .providers import GenerativeModel
    from .response_parser import ParsedBatch
    from .settings_store import ConfigRepository
    from .transport import RetryPolicy

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_LOG_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def partition_batches(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into consecutive slices of at most ``size``, preserving order."""
    if size < 1:
        msg = f"Batch size must be positive, got {size}"
        raise ValueError(msg)
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


def assign_lanes(batch_count: int, lane_count: int) -> list[int]:
    """Round-robin lane index for every batch: batch ``i`` goes to lane ``i % lane_count``."""
    if lane_count < 1:
        msg = "At least one lane is required"
        raise ValueError(msg)
    return [index % lane_count for index in range(batch_count)]


@dataclass(slots=True)
class _BatchOutcome:
    index: int
    size: int
    config_id: str
    suggestions: list[OrganizationSuggestion] = field(default_factory=list)
    succeeded: bool = False
    dispatched: bool = False


class BookmarkOrganiser:
    """LLM-backed bookmark categoriser driving one run at a time.

    A run flattens the tree, detects duplicates, snapshots the existing folder
    structure once, splits the bookmarks into batches and dispatches them all
    concurrently across the lanes of an AI config group (batch ``i`` uses lane
    ``i % N``). A failing batch is logged and contributes nothing; the run still
    resolves with whatever the other batches produced. Only structural problems
    (unknown or empty group, a duplicate detector defect) make the run fail.

    The run log (:meth:`get_logs`) and ``plan.metadata`` are how callers learn that
    a plan covers fewer bookmarks than requested.
    """

    def __init__(
        self,
        repository: ConfigRepository,
        *,
        on_log: Callable[[ProcessingLog], None] | None = None,
        on_progress: Callable[[BatchProgress], None] | None = None,
        http_client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        """Initialise the organiser.

        Args:
            repository: Source of AI configs and groups, read once per run.
            on_log: Called with every processing log entry as it is appended.
            on_progress: Called after each batch settles.
            http_client: Shared HTTP client handed to every provider adapter.
            policy: Retry/timeout policy for provider calls.

        """
        self._repository = repository
        self._on_log = on_log
        self._on_progress = on_progress
        self._http_client = http_client
        self._policy = policy
        self._model_factory: Callable[[AiConfig], GenerativeModel] = self._default_model
        self._state = OperationState.IDLE
        self._token: CancellationToken | None = None
        self._logs: list[ProcessingLog] = []

    # Test/extension hook -----------------------------------------------------
    def set_model_factory(self, factory: Callable[[AiConfig], GenerativeModel]) -> None:
        """Replace how lane configs become provider adapters (testing hook)."""
        self._model_factory = factory

    def _default_model(self, config: AiConfig) -> GenerativeModel:
        return build_model(config, http_client=self._http_client, policy=self._policy)

    # --- state machine -------------------------------------------------------------------

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def cancel_token(self) -> CancellationToken | None:
        return self._token

    def start_operation(self) -> CancellationToken:
        """Enter ``running`` with a fresh cancellation token and an empty log."""
        if self._state is OperationState.RUNNING:
            msg = "An organisation run is already in progress"
            raise OrganiserStateError(msg)
        self._token = CancellationToken()
        self._logs = []
        self._state = OperationState.RUNNING
        return self._token

    def cancel_operation(self, reason: str = "Operation cancelled by user") -> None:
        """Signal every outstanding batch of the current run to stop."""
        if self._state is not OperationState.RUNNING or self._token is None:
            LOGGER.debug("Cancel requested with no run in progress")
            return
        self._token.cancel(reason)
        self._add_log("warning", reason)

    def get_logs(self) -> list[ProcessingLog]:
        return list(self._logs)

    def _add_log(self, level: LogLevel, message: str, **metadata: object) -> ProcessingLog:
        entry = ProcessingLog(level=level, message=message, metadata=metadata)
        self._logs.append(entry)
        LOGGER.log(_LOG_LEVELS[level], message)
        if self._on_log is not None:
            self._on_log(entry)
        return entry

    # --- organisation ----------------------------------------------------------------------

    async def organize_bookmarks(
        self, nodes: Sequence[BookmarkNode], options: OrganizeOptions | None = None,
    ) -> OrganizationPlan:
        """Produce an organisation plan for ``nodes``.

        Raises:
            ConfigNotFoundError: the selected group is missing or has no members.
            OrganiserStateError: another run is already in progress.

        """
        options = options or OrganizeOptions()
        token = self.start_operation()
        try:
            plan = await self._organize(nodes, options, token)
        except asyncio.CancelledError:
            self._state = OperationState.CANCELLED
            raise
        except Exception as exc:
            self._state = OperationState.FAILED
            self._add_log("error", f"Organization failed: {exc}")
            raise
        self._state = OperationState.CANCELLED if token.cancelled else OperationState.COMPLETED
        return plan

    async def _organize(
        self,
        nodes: Sequence[BookmarkNode],
        options: OrganizeOptions,
        token: CancellationToken,
    ) -> OrganizationPlan:
        flat = extract_bookmarks(nodes)
        self._add_log("info", f"Found {len(flat)} bookmarks to organize")

        duplicates: list[DuplicateGroup] = []
        if options.detect_duplicates:
            duplicates = detect_duplicates([item.bookmark for item in flat])
            self._add_log(
                "info",
                f"Found {len(duplicates)} duplicate groups",
                duplicate_groups=len(duplicates),
            )

        structure = serialize_folder_structure(nodes)
        batches = partition_batches(flat, options.batch_size)

        settings = self._repository.load()
        group_id = options.group_id or settings.active_group_id
        lanes = resolve_group(settings.groups, settings.configs, group_id)
        models = [self._model_factory(config) for config in lanes]
        self._add_log(
            "info",
            f"Processing {len(batches)} batches across {len(models)} AI configurations",
            total_batches=len(batches),
            lanes=[model.name for model in models],
        )

        total = len(batches)
        progress = {"processed": 0}
        lane_for = assign_lanes(total, len(models))
        outcomes = [
            _BatchOutcome(index=index, size=len(batch), config_id=models[lane_for[index]].id)
            for index, batch in enumerate(batches)
        ]

        async def _run(outcome: _BatchOutcome, batch: list[FlatBookmark]) -> None:
            try:
                model = models[lane_for[outcome.index]]
                await self._process_batch(outcome, batch, model, structure, options, token)
            finally:
                progress["processed"] += 1
                if self._on_progress is not None:
                    self._on_progress(BatchProgress(processed=progress["processed"], total=total))

        try:
            settled = await asyncio.gather(
                *(_run(outcome, batch) for outcome, batch in zip(outcomes, batches)),
                return_exceptions=True,
            )
        finally:
            await asyncio.gather(*(model.aclose() for model in models))

        suggestions: list[OrganizationSuggestion] = []
        for outcome, result in zip(outcomes, settled):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                LOGGER.error("Batch %d crashed", outcome.index + 1, exc_info=result)
                self._add_log(
                    "error",
                    f"Batch {outcome.index + 1} failed unexpectedly: {result}",
                    batch=outcome.index + 1,
                )
                continue
            suggestions.extend(outcome.suggestions)

        return self._assemble_plan(nodes, flat, batches, outcomes, suggestions, duplicates, options)

    async def _process_batch(  # noqa: PLR0913
        self,
        outcome: _BatchOutcome,
        batch: list[FlatBookmark],
        model: GenerativeModel,
        structure: str,
        options: OrganizeOptions,
        token: CancellationToken,
    ) -> None:
        """Fill ``outcome`` in place so a crash still leaves its dispatch recorded."""
        index = outcome.index
        label = f"Batch {index + 1}"
        batch_ids = [item.id for item in batch]
        if token.cancelled:
            self._add_log("warning", f"{label} skipped: operation cancelled", batch=index + 1)
            return

        prompt = build_batch_organize_prompt(
            [item.bookmark for item in batch],
            structure,
            options.max_depth,
            create_hierarchy=options.create_hierarchy,
            generate_tags=options.generate_tags,
        )
        generation = GenerationOptions(
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            cancel_token=token,
        )
        outcome.dispatched = True
        try:
            result = await model.generate_content(prompt, generation)
        except OperationCancelledError:
            self._add_log("warning", f"{label} cancelled", batch=index + 1, provider=model.provider)
            return
        except ProviderError as exc:
            self._log_provider_failure(label, model, exc, batch_ids)
            return

        try:
            parsed = parse_batch_response(
                result.text, batch_ids, options.confidence_threshold, options.max_depth,
            )
        except ProviderError as exc:
            self._add_log(
                "error",
                f"{label}: failed to parse AI response ({exc.message})",
                batch=index + 1,
                provider=model.provider,
                bookmark_ids=batch_ids,
            )
            return

        self._log_parse_findings(label, index, parsed)
        accepted = parsed.suggestions
        if not options.generate_tags:
            accepted = [s.model_copy(update={"suggested_tags": []}) for s in accepted]
        outcome.suggestions = accepted
        outcome.succeeded = True
        self._add_log(
            "info",
            f"{label}: {len(accepted)}/{len(batch)} suggestions from {model.name}",
            batch=index + 1,
            provider=model.provider,
        )

    def _log_provider_failure(
        self, label: str, model: GenerativeModel, exc: ProviderError, batch_ids: list[str],
    ) -> None:
        provider = exc.provider or model.provider
        if exc.code is ErrorCode.RATE_LIMIT:
            message = (
                f"{label}: rate limit reached on {model.name}; "
                "reduce the batch size or add configurations to the group"
            )
        elif exc.code is ErrorCode.AUTH_ERROR:
            message = f"{label}: authentication failed for {model.name}; check the API key"
        elif exc.code is ErrorCode.ENDPOINT_NOT_FOUND:
            message = f"{label}: endpoint not found for {model.name}; check the base URL and model"
        else:
            message = f"{label}: {model.name} request failed: {exc.message}"
        self._add_log(
            "error",
            message,
            provider=provider,
            statusCode=exc.status,
            code=exc.code.value,
            bookmark_ids=batch_ids,
        )

    def _log_parse_findings(self, label: str, index: int, parsed: ParsedBatch) -> None:
        for orphan in parsed.orphan_ids:
            self._add_log(
                "warning",
                f"{label}: AI returned unknown bookmark id {orphan}; ignoring",
                batch=index + 1,
                bookmark_id=orphan,
            )
        for repeated in parsed.repeated_ids:
            self._add_log(
                "warning",
                f"{label}: AI repeated bookmark id {repeated}; keeping the first entry",
                batch=index + 1,
                bookmark_id=repeated,
            )
        if parsed.invalid_entries:
            self._add_log(
                "warning",
                f"{label}: skipped {parsed.invalid_entries} malformed entries",
                batch=index + 1,
            )
        if parsed.rescued:
            self._add_log("info", f"{label}: recovered a suggestion from non-JSON output")
        for low in parsed.below_threshold:
            self._add_log(
                "info",
                f"{label}: dropped suggestion for {low.bookmark_id} "
                f"(confidence {low.confidence:.2f} below threshold)",
                batch=index + 1,
                bookmark_id=low.bookmark_id,
            )

    def _assemble_plan(  # noqa: PLR0913
        self,
        nodes: Sequence[BookmarkNode],
        flat: list[FlatBookmark],
        batches: list[list[FlatBookmark]],
        outcomes: list[_BatchOutcome],
        suggestions: list[OrganizationSuggestion],
        duplicates: list[DuplicateGroup],
        options: OrganizeOptions,
    ) -> OrganizationPlan:
        succeeded = [outcome for outcome in outcomes if outcome.succeeded]
        failed = len(batches) - len(succeeded)
        used = list(dict.fromkeys(o.config_id for o in outcomes if o.dispatched))

        metadata = PlanMetadata(
            total_bookmarks=len(flat),
            processed_bookmarks=sum(outcome.size for outcome in succeeded),
            total_batches=len(batches),
            processed_batches=len(succeeded),
            failed_batches=failed,
            ai_configs_used=used,
        )
        plan = OrganizationPlan(
            suggestions=suggestions,
            conflicts=identify_conflicts(suggestions, nodes),
            duplicates=duplicates,
            new_folders=generate_folder_structure(
                suggestions, create_hierarchy=options.create_hierarchy,
            ),
            metadata=metadata,
        )
        level: LogLevel = "success" if failed == 0 else "warning"
        self._add_log(
            level,
            f"Organization finished: {len(suggestions)} suggestions, "
            f"{len(succeeded)}/{len(batches)} batches succeeded",
            processed_batches=len(succeeded),
            failed_batches=failed,
        )
        return plan
