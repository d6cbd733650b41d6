"""
Configuration and constants for the document reflow pipeline.

This module provides:
- Logging setup
- The aggregated pipeline configuration (every heuristic threshold is a
  named field of the config dataclass owned by the module that uses it)
- Environment overrides
"""

import os
from dataclasses import dataclass, field
from typing import Optional
import logging

from reflow.assembler import AssemblerConfig, DocumentAssembler
from reflow.classifier import ClassifierConfig, STRATEGIES
from reflow.export import RenderConfig
from reflow.images import CorrelatorConfig
from reflow.layout import SegmenterConfig
from reflow.translation import TranslationConfig

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger("reflow")


# ============================================================================
# Pipeline Configuration
# ============================================================================

@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    segmenter: SegmenterConfig = field(default_factory=SegmenterConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    assembler: AssemblerConfig = field(default_factory=AssemblerConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    correlator: CorrelatorConfig = field(default_factory=CorrelatorConfig)

    # Global settings
    debug_mode: bool = False
    include_images: bool = True

    def set_include_header_footer(self, include: bool):
        """Header/footer inclusion spans assembly and rendering."""
        self.assembler.include_header_footer = include
        self.render.include_header_footer = include

    def build_assembler(self) -> DocumentAssembler:
        return DocumentAssembler(
            segmenter_config=self.segmenter,
            classifier_config=self.classifier,
            assembler_config=self.assembler,
            render_config=self.render,
            translation_config=self.translation,
            correlator_config=self.correlator,
            include_images=self.include_images
        )


# ============================================================================
# Default Configuration Instance
# ============================================================================

def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if _env_flag("REFLOW_DEBUG"):
        config.debug_mode = True

    strategy = os.environ.get("REFLOW_STRATEGY", "").strip().lower()
    if strategy:
        if strategy in STRATEGIES:
            config.classifier.strategy = strategy
        else:
            logger.warning(f"Ignoring unknown REFLOW_STRATEGY: {strategy}")

    target = os.environ.get("REFLOW_TARGET_LANG", "").strip()
    if target:
        config.translation.target_lang = target

    include = _env_flag("REFLOW_INCLUDE_HEADER_FOOTER")
    if include is not None:
        config.set_include_header_footer(include)

    delay = os.environ.get("REFLOW_TRANSLATION_DELAY", "").strip()
    if delay:
        try:
            config.translation.delay_seconds = max(0.0, float(delay))
        except ValueError:
            logger.warning(f"Ignoring invalid REFLOW_TRANSLATION_DELAY: {delay}")

    return config


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"
