# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Logistic-regression scoring of feature vectors against trained weights."""

import logging
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from osd.features import FeatureVector

logger = logging.getLogger(__name__)

ModelSelector = Literal["default", "deep", "command_line"]

MODEL_SELECTORS: tuple[ModelSelector, ...] = ("default", "deep", "command_line")
DEFAULT_SELECTOR: ModelSelector = "default"
MODEL_FILE_SUFFIX = ".txt"
DECISION_THRESHOLD = 0.5

_WEIGHT_SEPARATOR = re.compile(r"[\s,]+")


class ConfigurationError(RuntimeError):
    """Represent a build or deployment defect in model configuration."""


class FeatureLengthMismatchError(ConfigurationError):
    """Represent a feature vector that does not fit the selected model."""


class ModelNotFoundError(ConfigurationError):
    """Represent a requested model variant that was never loaded."""


class ModelLoadError(ConfigurationError):
    """Represent an unreadable or malformed model file."""


@dataclass(frozen=True)
class ModelVector:
    """Represent trained logistic-regression weights.

    Attributes:
        name: Model variant name.
        weights: Bias at index 0 followed by one weight per feature.
    """

    name: str
    weights: tuple[float, ...]

    @property
    def bias(self) -> float:
        return self.weights[0]

    @property
    def feature_count(self) -> int:
        return len(self.weights) - 1


@dataclass(frozen=True)
class ClassificationResult:
    """Represent the classifier verdict for one feature vector."""

    obfuscated: bool
    score: float


def sigmoid(logit: float) -> float:
    """Return the logistic function of ``logit``.

    Both branches compute ``1 / (1 + exp(-logit))``; the negative branch is
    rearranged so ``exp`` never overflows.
    """
    if logit >= 0:
        return 1.0 / (1.0 + math.exp(-logit))
    z = math.exp(logit)
    return z / (1.0 + z)


class ObfuscationClassifier:
    """Score feature vectors with one of several loaded model vectors."""

    def __init__(self, models: Mapping[ModelSelector, ModelVector]) -> None:
        """Initialize classifier.

        Args:
            models: Loaded model vectors keyed by selector.
        """
        self._models = dict(models)

    @property
    def selectors(self) -> list[ModelSelector]:
        return sorted(self._models)

    def model(self, selector: ModelSelector | None = None) -> ModelVector:
        """Return the model vector for a selector.

        Raises:
            ModelNotFoundError: If no model is loaded for the selector.
        """
        key = selector or DEFAULT_SELECTOR
        try:
            return self._models[key]
        except KeyError:
            raise ModelNotFoundError(
                f"No model loaded for selector '{key}'."
            ) from None

    def classify(
        self,
        features: FeatureVector | Sequence[float],
        selector: ModelSelector | None = None,
    ) -> ClassificationResult:
        """Score a feature vector.

        Args:
            features: Ordered feature values.
            selector: Model variant; the default model when ``None``.

        Returns:
            Verdict and logistic score.

        Raises:
            ModelNotFoundError: If the selected model is not loaded.
            FeatureLengthMismatchError: If the vector length is not
                ``len(model.weights) - 1``.
        """
        model = self.model(selector)
        values = features.values if isinstance(features, FeatureVector) else features
        if len(values) != model.feature_count:
            logger.warning(
                f"Feature vector does not match model "
                f"(model={model.name} expected={model.feature_count} actual={len(values)})"
            )
            raise FeatureLengthMismatchError(
                f"Model '{model.name}' expects {model.feature_count} features, "
                f"got {len(values)}."
            )

        weights = model.weights
        logit = weights[0]
        for index, value in enumerate(values):
            logit += weights[index + 1] * value
        score = sigmoid(logit)
        return ClassificationResult(obfuscated=score > DECISION_THRESHOLD, score=score)


def load_model_vector(path: Path, name: str | None = None) -> ModelVector:
    """Load one model vector from a text file.

    The file holds doubles separated by commas or whitespace; text after ``#``
    on a line is ignored.

    Args:
        path: Model file path.
        name: Model name; defaults to the file stem.

    Returns:
        Loaded model vector.

    Raises:
        ModelLoadError: If the file cannot be read or holds no valid weights.
    """
    model_name = name or path.stem
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning(f"Failed to read model file (path={path} error={exc})")
        raise ModelLoadError(f"Cannot read model file {path}: {exc}") from exc

    weights: list[float] = []
    for line_no, line in enumerate(lines, start=1):
        body = line.split("#", 1)[0].strip()
        if not body:
            continue
        for token in _WEIGHT_SEPARATOR.split(body):
            if not token:
                continue
            try:
                weight = float(token)
            except ValueError as exc:
                raise ModelLoadError(
                    f"Invalid weight '{token}' in {path} line {line_no}."
                ) from exc
            if not math.isfinite(weight):
                raise ModelLoadError(
                    f"Non-finite weight '{token}' in {path} line {line_no}."
                )
            weights.append(weight)

    if not weights:
        raise ModelLoadError(f"Model file {path} contains no weights.")
    return ModelVector(name=model_name, weights=tuple(weights))


def load_models(
    models_dir: Path,
    selectors: Sequence[ModelSelector] = MODEL_SELECTORS,
) -> dict[ModelSelector, ModelVector]:
    """Load every available model variant from a directory.

    Variants without a ``<selector>.txt`` file are skipped.

    Raises:
        ModelNotFoundError: If no variant could be found.
        ModelLoadError: If a present model file is malformed.
    """
    models: dict[ModelSelector, ModelVector] = {}
    for selector in selectors:
        path = models_dir / f"{selector}{MODEL_FILE_SUFFIX}"
        if not path.is_file():
            logger.info(f"Model variant not available (selector={selector} path={path})")
            continue
        models[selector] = load_model_vector(path, name=selector)
        logger.info(
            f"Loaded model (selector={selector} features={models[selector].feature_count})"
        )
    if not models:
        raise ModelNotFoundError(f"No model files found in {models_dir}.")
    return models
