"""
Batch import orchestrator.

Items are processed in fixed windows of `max_concurrent`: a window is
dispatched in parallel and fully settled before the next one starts, with a
short pause in between. Per item:

    gate (policy -> robots) -> import operation (network retry) -> whitelist -> audit

A failing item becomes a failed result; it never aborts the batch.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar, Union

import requests

from compliance.gate import ComplianceGate
from compliance.whitelist import ProductWhitelist
from core.config import ComplianceConfig, ComplianceSettings
from core.errors import ErrorKind, classify_error
from core.models import (
    AllowedImportedProduct,
    BatchAnalyzeItemResult,
    BatchImportItem,
    BatchImportResult,
    BatchItemResult,
    ImportOptions,
)
from core.structured_logging import emit_json_event, emit_warning
from fetcher.retry import RetryExecutor, RetryOptions
from importer.revalidation import RevalidationClient
from storage.cache import KeyValueCache

ImportOperation = Callable[[str, ImportOptions], Mapping[str, Any]]
AnalyzeOperation = Callable[[str], Mapping[str, Any]]

E = TypeVar("E")
R = TypeVar("R")

CREATION_DISABLED_MESSAGE = (
    "Compliance mode active (data scope 'minimal'): batch import (creation) is disabled. "
    "Use batch analyze instead."
)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


RawItem = Union[BatchImportItem, Mapping[str, Any], str]


def _coerce_item(item: RawItem) -> BatchImportItem:
    if isinstance(item, BatchImportItem):
        return item
    if isinstance(item, str):
        return BatchImportItem(url=item)
    return BatchImportItem.model_validate(item)


def _raw_url(item: RawItem) -> str:
    """Best-effort URL of an item that may not have been coerced."""
    if isinstance(item, BatchImportItem):
        return item.url
    if isinstance(item, str):
        return item
    url = item.get("url") if isinstance(item, Mapping) else None
    return url if isinstance(url, str) and url else "unknown"


def _describe(exc: BaseException, fallback: str) -> str:
    try:
        return str(exc) or fallback
    except Exception:
        return fallback


def _crash_event(url: str, exc: BaseException) -> tuple[str, ErrorKind]:
    """Report a crashed slot without touching anything that may raise again."""
    message = _describe(exc, "Batch item processing failed")
    try:
        kind = classify_error(exc)
    except Exception:
        kind = ErrorKind.IMPORT_FAILED
    emit_warning(
        "batch_item_crashed",
        component="batch",
        url=url,
        error_type=type(exc).__name__,
        error_kind=kind.value,
        error=message,
    )
    return message, kind


class BatchImportOrchestrator:
    """Run compliance-gated imports over an explicit list of URLs."""

    def __init__(
        self,
        gate: ComplianceGate,
        import_operation: ImportOperation,
        analyze_operation: AnalyzeOperation | None = None,
        whitelist: ProductWhitelist | None = None,
        revalidation: RevalidationClient | None = None,
        retry_executor: RetryExecutor | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        window_pause_seconds: float = ComplianceConfig.BATCH_WINDOW_PAUSE_SECONDS,
        item_retry_options: RetryOptions | None = None,
    ) -> None:
        """Initialize collaborators; `sleep_fn` drives both pauses and backoff."""
        self.gate = gate
        self.settings = gate.settings
        self.import_operation = import_operation
        self.analyze_operation = analyze_operation
        self.whitelist = whitelist or ProductWhitelist()
        self.revalidation = revalidation
        self._sleep = sleep_fn or time.sleep
        self.retry_executor = retry_executor or RetryExecutor(sleep_fn=self._sleep, component="batch")
        self.window_pause_seconds = window_pause_seconds
        self.item_retry_options = item_retry_options or RetryOptions(
            max_retries=ComplianceConfig.BATCH_ITEM_MAX_RETRIES,
            initial_delay=ComplianceConfig.BATCH_ITEM_INITIAL_DELAY_SECONDS,
        )

    @classmethod
    def from_settings(
        cls,
        settings: ComplianceSettings,
        import_operation: ImportOperation,
        analyze_operation: AnalyzeOperation | None = None,
        cache: KeyValueCache | None = None,
        session: requests.Session | None = None,
    ) -> "BatchImportOrchestrator":
        """Wire the full pipeline from environment-derived settings."""
        return cls(
            gate=ComplianceGate.from_settings(settings, cache=cache, session=session),
            import_operation=import_operation,
            analyze_operation=analyze_operation,
            revalidation=RevalidationClient.from_settings(settings, session=session),
        )

    # ------------------------------------------------------------------
    # Window scheduling
    # ------------------------------------------------------------------

    def _run_windows(
        self,
        entries: Sequence[E],
        max_concurrent: int | None,
        worker: Callable[[E], R],
        on_crash: Callable[[E, BaseException], R],
    ) -> list[R]:
        """Run `worker` over `entries` window by window, preserving input order."""
        if max_concurrent is not None and max_concurrent < 0:
            raise ValueError("max_concurrent must not be negative")
        window_size = max_concurrent or ComplianceConfig.BATCH_MAX_CONCURRENT

        results: list[R] = []
        if not entries:
            return results

        with ThreadPoolExecutor(max_workers=window_size, thread_name_prefix="batch-import") as pool:
            for start in range(0, len(entries), window_size):
                window = entries[start : start + window_size]
                futures = [pool.submit(worker, entry) for entry in window]
                for entry, future in zip(window, futures):
                    try:
                        results.append(future.result())
                    except Exception as exc:
                        results.append(on_crash(entry, exc))

                emit_json_event(
                    "batch_window_completed",
                    component="batch",
                    window_index=start // window_size,
                    window_size=len(window),
                )
                if start + window_size < len(entries):
                    self._sleep(self.window_pause_seconds)

        return results

    def _fetch_whitelisted(
        self,
        url: str,
        operation: Callable[[], Mapping[str, Any]],
    ) -> AllowedImportedProduct:
        """Gate, run with network retry, whitelist, and audit one URL."""
        decision = self.gate.check(url)
        start = time.monotonic()
        try:
            raw = self.retry_executor.run_network(operation, self.item_retry_options)
            product = self.whitelist.enforce(raw)
        except Exception as exc:
            self.gate.record_error(decision, exc, duration_ms=_elapsed_ms(start))
            raise
        self.gate.record_success(decision, duration_ms=_elapsed_ms(start))
        return product

    @staticmethod
    def _failure_event(url: str, exc: BaseException, operation: str) -> ErrorKind:
        kind = classify_error(exc)
        emit_warning(
            "batch_item_failed",
            component="batch",
            operation=operation,
            url=url,
            error_kind=kind.value,
            error=exc,
        )
        return kind

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def _effective_options(self, item: BatchImportItem, download_images: bool) -> ImportOptions:
        requested = item.options.download_images
        if requested is None:
            requested = download_images
        # Images are only ever fetched with compliance mode off.
        allowed = bool(requested) and self.settings.images_allowed
        return item.options.model_copy(update={"download_images": allowed})

    def _import_one(self, raw: RawItem, download_images: bool) -> BatchItemResult:
        try:
            item = _coerce_item(raw)
        except Exception as exc:
            url = _raw_url(raw)
            emit_warning(
                "batch_item_failed",
                component="batch",
                operation="import",
                url=url,
                error_kind=ErrorKind.IMPORT_FAILED.value,
                error=exc,
            )
            return BatchItemResult(
                url=url,
                success=False,
                error=_describe(exc, "Invalid batch item"),
                error_kind=ErrorKind.IMPORT_FAILED,
            )

        try:
            options = self._effective_options(item, download_images)
            product = self._fetch_whitelisted(
                item.url,
                lambda: self.import_operation(item.url, options),
            )
            return BatchItemResult(url=item.url, success=True, product=product)
        except Exception as exc:
            kind = self._failure_event(item.url, exc, "import")
            return BatchItemResult(
                url=item.url,
                success=False,
                error=str(exc) or type(exc).__name__,
                error_kind=kind,
            )

    @staticmethod
    def _crashed_import(raw: RawItem, exc: BaseException) -> BatchItemResult:
        url = _raw_url(raw)
        message, kind = _crash_event(url, exc)
        return BatchItemResult(url=url, success=False, error=message, error_kind=kind)

    def import_batch(
        self,
        items: Iterable[RawItem],
        max_concurrent: int | None = None,
        download_images: bool = False,
    ) -> BatchImportResult:
        """
        Import every item and aggregate per-item outcomes.

        Returns:
            BatchImportResult with one result per input item, in input order.
            The revalidation side effect fires once when any item succeeded.
        """
        batch = list(items)
        emit_json_event(
            "batch_import_started",
            component="batch",
            total=len(batch),
            max_concurrent=max_concurrent or ComplianceConfig.BATCH_MAX_CONCURRENT,
        )

        if self.settings.creation_blocked:
            emit_warning(
                "batch_import_blocked",
                component="batch",
                total=len(batch),
                compliance_mode=self.settings.compliance_mode.value,
                data_scope=self.settings.data_scope.value,
                reason=CREATION_DISABLED_MESSAGE,
            )
            return BatchImportResult.from_results(
                [
                    BatchItemResult(
                        url=_raw_url(item),
                        success=False,
                        error=CREATION_DISABLED_MESSAGE,
                        error_kind=ErrorKind.POLICY_DENIED,
                    )
                    for item in batch
                ]
            )

        results = self._run_windows(
            batch,
            max_concurrent,
            worker=lambda item: self._import_one(item, download_images),
            on_crash=self._crashed_import,
        )
        result = BatchImportResult.from_results(results)
        emit_json_event(
            "batch_import_completed",
            component="batch",
            total=result.total,
            success=result.success,
            failed=result.failed,
        )

        if result.success > 0:
            self._trigger_revalidation()
        return result

    def _trigger_revalidation(self) -> None:
        if self.revalidation is None:
            return
        try:
            self.revalidation.revalidate()
        except Exception as exc:
            emit_warning(
                "revalidation_failed",
                component="batch",
                error_kind=ErrorKind.SINK_FAILURE.value,
                error=exc,
            )

    # ------------------------------------------------------------------
    # Analyze (no creation)
    # ------------------------------------------------------------------

    def _analyze_one(self, url: str) -> BatchAnalyzeItemResult:
        operation = self.analyze_operation
        assert operation is not None
        try:
            analysis = self._fetch_whitelisted(url, lambda: operation(url))
            return BatchAnalyzeItemResult(url=url, success=True, analysis=analysis)
        except Exception as exc:
            kind = self._failure_event(url, exc, "analyze")
            return BatchAnalyzeItemResult(
                url=url,
                success=False,
                error=str(exc) or type(exc).__name__,
                error_kind=kind,
            )

    @staticmethod
    def _crashed_analyze(url: str, exc: BaseException) -> BatchAnalyzeItemResult:
        message, kind = _crash_event(url, exc)
        return BatchAnalyzeItemResult(url=url, success=False, error=message, error_kind=kind)

    def analyze_batch(
        self,
        urls: Iterable[str],
        max_concurrent: int | None = None,
    ) -> list[BatchAnalyzeItemResult]:
        """Analyze URLs without creating products; same gating and windowing."""
        if self.analyze_operation is None:
            raise ValueError("analyze_batch requires an analyze_operation")

        url_list = list(urls)
        emit_json_event(
            "batch_analyze_started",
            component="batch",
            total=len(url_list),
            max_concurrent=max_concurrent or ComplianceConfig.BATCH_MAX_CONCURRENT,
        )
        results = self._run_windows(
            url_list,
            max_concurrent,
            worker=self._analyze_one,
            on_crash=self._crashed_analyze,
        )
        succeeded = sum(1 for item in results if item.success)
        emit_json_event(
            "batch_analyze_completed",
            component="batch",
            total=len(results),
            success=succeeded,
            failed=len(results) - succeeded,
        )
        return results
