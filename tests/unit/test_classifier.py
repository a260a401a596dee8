# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
import math
from pathlib import Path

import pytest

from osd.classifier import (
    FeatureLengthMismatchError,
    ModelLoadError,
    ModelNotFoundError,
    ModelVector,
    ObfuscationClassifier,
    load_model_vector,
    load_models,
    sigmoid,
)
from osd.features import FeatureVector


def _classifier() -> ObfuscationClassifier:
    return ObfuscationClassifier(
        {
            "default": ModelVector(name="default", weights=(-1.5, 2.0, 0.5, -0.25)),
            "deep": ModelVector(name="deep", weights=(0.25, 1.0)),
        }
    )


def test_cls_001_scores_bias_plus_weighted_features() -> None:
    result = _classifier().classify([1.0, 2.0, 4.0])

    logit = -1.5 + 2.0 * 1.0 + 0.5 * 2.0 + -0.25 * 4.0
    assert result.score == pytest.approx(1.0 / (1.0 + math.exp(-logit)))
    assert result.obfuscated is (result.score > 0.5)


def test_cls_002_zero_features_score_sigmoid_of_bias() -> None:
    result = _classifier().classify([0.0, 0.0, 0.0])

    assert result.score == pytest.approx(1.0 / (1.0 + math.exp(1.5)))
    assert result.obfuscated is False


def test_cls_003_scoring_is_bit_identical_across_calls() -> None:
    classifier = _classifier()
    features = FeatureVector.from_pairs([("a", 0.1), ("b", 0.7), ("c", 3.3)])

    first = classifier.classify(features)
    second = classifier.classify(features)

    assert first.score.hex() == second.score.hex()


def test_cls_004_length_mismatch_raises_configuration_error() -> None:
    classifier = _classifier()

    with pytest.raises(FeatureLengthMismatchError):
        classifier.classify([1.0, 2.0])
    with pytest.raises(FeatureLengthMismatchError):
        classifier.classify([1.0, 2.0, 3.0, 4.0])


def test_cls_005_selector_picks_model_and_missing_selector_fails() -> None:
    classifier = _classifier()

    deep = classifier.classify([1.0], selector="deep")

    assert deep.score == pytest.approx(sigmoid(1.25))
    assert deep.obfuscated is True
    with pytest.raises(ModelNotFoundError):
        classifier.classify([1.0], selector="command_line")


def test_cls_006_sigmoid_is_stable_for_extreme_logits() -> None:
    assert sigmoid(0.0) == 0.5
    assert sigmoid(1000.0) == 1.0
    assert sigmoid(-1000.0) == 0.0
    assert sigmoid(-2.0) == pytest.approx(1.0 / (1.0 + math.exp(2.0)))


def test_cls_007_exact_half_score_is_not_obfuscated() -> None:
    classifier = ObfuscationClassifier(
        {"default": ModelVector(name="default", weights=(0.0, 1.0))}
    )

    result = classifier.classify([0.0])

    assert result.score == 0.5
    assert result.obfuscated is False


def test_cls_008_load_model_vector_accepts_commas_whitespace_and_comments(
    tmp_path: Path,
) -> None:
    path = tmp_path / "default.txt"
    path.write_text("# bias first\n-0.5,\n1.0, 2.5  # weights\n-3e-2\n", encoding="utf-8")

    model = load_model_vector(path)

    assert model.name == "default"
    assert model.weights == (-0.5, 1.0, 2.5, -0.03)
    assert model.bias == -0.5
    assert model.feature_count == 3


def test_cls_009_load_model_vector_rejects_bad_values(tmp_path: Path) -> None:
    bad = tmp_path / "bad.txt"
    bad.write_text("0.1, abc\n", encoding="utf-8")
    empty = tmp_path / "empty.txt"
    empty.write_text("# nothing\n", encoding="utf-8")
    non_finite = tmp_path / "nan.txt"
    non_finite.write_text("nan\n", encoding="utf-8")

    for path in (bad, empty, non_finite, tmp_path / "missing.txt"):
        with pytest.raises(ModelLoadError):
            load_model_vector(path)


def test_cls_010_load_models_skips_absent_variants(tmp_path: Path) -> None:
    (tmp_path / "default.txt").write_text("0.0 1.0\n", encoding="utf-8")
    (tmp_path / "command_line.txt").write_text("0.0 1.0 2.0\n", encoding="utf-8")

    models = load_models(tmp_path)

    assert sorted(models) == ["command_line", "default"]
    assert models["command_line"].feature_count == 2


def test_cls_011_load_models_fails_without_any_model(tmp_path: Path) -> None:
    with pytest.raises(ModelNotFoundError):
        load_models(tmp_path)
