"""Context curation and request formatting for Optimizely development assistants."""

from .config import PipelineConfig, load_config_from_env

__all__ = ["PipelineConfig", "load_config_from_env"]
