# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Public import surface for obfuscated script detection."""

from osd.classifier import (
    ConfigurationError,
    FeatureLengthMismatchError,
    ModelNotFoundError,
    ModelVector,
    ObfuscationClassifier,
    load_models,
)
from osd.config import InvalidRuleError, PipelineConfig, RunRules, WhitelistPaths
from osd.features import CheckFeatureExtractor, FeatureExtractionError, FeatureVector
from osd.model import AnalysisResult, InputItem, LogFragment, ReassembledScript
from osd.pipeline import DetectionPipeline
from osd.reassembler import FragmentReassembler
from osd.whitelist import WhitelistEvaluator, WhitelistPoller

__all__ = [
    "AnalysisResult",
    "CheckFeatureExtractor",
    "ConfigurationError",
    "DetectionPipeline",
    "FeatureExtractionError",
    "FeatureLengthMismatchError",
    "FeatureVector",
    "FragmentReassembler",
    "InputItem",
    "InvalidRuleError",
    "LogFragment",
    "ModelNotFoundError",
    "ModelVector",
    "ObfuscationClassifier",
    "PipelineConfig",
    "ReassembledScript",
    "RunRules",
    "WhitelistEvaluator",
    "WhitelistPaths",
    "WhitelistPoller",
    "load_models",
]
