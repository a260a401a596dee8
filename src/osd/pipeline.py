# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Detection orchestration: hash, allow-list, extract, classify, persist."""

import concurrent.futures
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from osd.classifier import ConfigurationError, ObfuscationClassifier
from osd.config import PipelineConfig
from osd.content import content_hash
from osd.features import FeatureExtractionError, FeatureExtractor
from osd.model import AnalysisResult, InputItem
from osd.persistence import PersistenceError, ResultStore
from osd.store import FileResultStore
from osd.whitelist import WhitelistEvaluator

logger = logging.getLogger(__name__)


@dataclass
class _Progress:
    total: int
    completed: int = 0
    whitelisted: int = 0
    obfuscated: int = 0
    failed: int = 0

    def record(self, result: AnalysisResult) -> None:
        self.completed += 1
        if result.whitelisted:
            self.whitelisted += 1
        if result.obfuscated:
            self.obfuscated += 1
        if result.error is not None:
            self.failed += 1


class DetectionPipeline:
    """Run the per-item detection sequence over batches of inputs."""

    def __init__(
        self,
        whitelist: WhitelistEvaluator,
        extractor: FeatureExtractor,
        classifier: ObfuscationClassifier,
        config: PipelineConfig | None = None,
        store: ResultStore | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            whitelist: Allow-list evaluator shared across runs.
            extractor: Feature extractor for non-whitelisted content.
            classifier: Classifier holding the loaded model vectors.
            config: Run configuration; defaults apply when ``None``.
            store: Result store; a file store under ``config.results_dir`` is
                created when persistence is enabled and none is given.

        Raises:
            ValueError: If ``max_workers`` or ``progress_batch_size`` is not
                greater than zero.
            ModelNotFoundError: If the configured model variant is not loaded.
        """
        self._config = config or PipelineConfig()
        if self._config.max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if self._config.progress_batch_size <= 0:
            raise ValueError("progress_batch_size must be > 0")
        classifier.model(self._config.model_selector)
        self._whitelist = whitelist
        self._extractor = extractor
        self._classifier = classifier
        if store is None and self._config.persist_results:
            store = FileResultStore(
                results_dir=self._config.results_dir,
                extension=self._config.result_extension,
            )
        self._store = store if self._config.persist_results else None

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def analyze(self, item: InputItem) -> AnalysisResult:
        """Run detection for one input item.

        Args:
            item: Normalized input.

        Returns:
            The item's analysis result.

        Raises:
            FeatureLengthMismatchError: If the extractor output does not fit
                the selected model.
        """
        item_hash = content_hash(item.content)

        decision = self._whitelist.evaluate(
            item.content, item_hash, run_rules=self._config.run_rules
        )
        if decision.match:
            logger.debug(
                f"Item whitelisted (source={item.source} kind={decision.kind} "
                f"name={decision.name})"
            )
            return AnalysisResult(
                content=item.content,
                hash=item_hash,
                source=item.source,
                whitelisted=True,
                whitelist_detail=decision,
                obfuscated=False,
                obfuscated_score=0.0,
                extraction_duration=0.0,
                classification_duration=0.0,
                result_location="",
            )

        extraction_started = time.perf_counter()
        try:
            features = self._extractor.extract(item.content)
        except ConfigurationError:
            raise
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, FeatureExtractionError):
                error = str(exc)
            else:
                error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                f"Feature extraction failed (source={item.source} hash={item_hash} "
                f"error={error})"
            )
            return AnalysisResult(
                content=item.content,
                hash=item_hash,
                source=item.source,
                whitelisted=False,
                whitelist_detail=None,
                obfuscated=False,
                obfuscated_score=None,
                extraction_duration=time.perf_counter() - extraction_started,
                classification_duration=0.0,
                result_location="",
                error=error,
            )
        extraction_duration = time.perf_counter() - extraction_started

        classification_started = time.perf_counter()
        verdict = self._classifier.classify(features, self._config.model_selector)
        classification_duration = time.perf_counter() - classification_started

        result_location = ""
        persistence_error: str | None = None
        if verdict.obfuscated and self._store is not None:
            try:
                result_location = self._store.store(item_hash, item.content)
            except PersistenceError as exc:
                persistence_error = str(exc)

        return AnalysisResult(
            content=item.content,
            hash=item_hash,
            source=item.source,
            whitelisted=False,
            whitelist_detail=None,
            obfuscated=verdict.obfuscated,
            obfuscated_score=verdict.score,
            extraction_duration=extraction_duration,
            classification_duration=classification_duration,
            result_location=result_location,
            persistence_error=persistence_error,
        )

    def run(self, items: Sequence[InputItem]) -> list[AnalysisResult]:
        """Run detection over a batch.

        Args:
            items: Inputs to analyze.

        Returns:
            Results in input order.

        Raises:
            FeatureLengthMismatchError: If any item's features do not fit the
                selected model. The remaining items are abandoned.
        """
        progress = _Progress(total=len(items))
        if not items:
            self._log_progress(progress)
            return []
        if self._config.max_workers == 1:
            results: list[AnalysisResult] = []
            for item in items:
                result = self.analyze(item)
                results.append(result)
                self._advance(progress, result)
            return results
        return self._run_parallel(items, progress)

    def _run_parallel(
        self, items: Sequence[InputItem], progress: _Progress
    ) -> list[AnalysisResult]:
        slots: list[AnalysisResult | None] = [None] * len(items)
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self._config.max_workers
        ) as executor:
            future_to_index = {
                executor.submit(self.analyze, item): index
                for index, item in enumerate(items)
            }
            try:
                for future in concurrent.futures.as_completed(future_to_index):
                    result = future.result()
                    slots[future_to_index[future]] = result
                    self._advance(progress, result)
            except ConfigurationError:
                for pending in future_to_index:
                    pending.cancel()
                raise
        return [result for result in slots if result is not None]

    def _advance(self, progress: _Progress, result: AnalysisResult) -> None:
        progress.record(result)
        if (
            progress.completed % self._config.progress_batch_size == 0
            or progress.completed == progress.total
        ):
            self._log_progress(progress)

    def _log_progress(self, progress: _Progress) -> None:
        percent = (
            100.0 if progress.total == 0 else (progress.completed / progress.total) * 100.0
        )
        logger.info(
            "detection_progress completed=%s total=%s whitelisted=%s obfuscated=%s "
            "failed=%s percent=%.2f",
            progress.completed,
            progress.total,
            progress.whitelisted,
            progress.obfuscated,
            progress.failed,
            percent,
        )
