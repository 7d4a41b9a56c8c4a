"""
Root module of the package. This module re-exports the most commonly used types and
functions to reduce the verbosity of the imports statements.
"""

__version__ = "0.1.0"

from .config import PipelineConfig as PipelineConfig
from .config import create_pipeline_config as create_pipeline_config
from .env import NewRelicSettings as NewRelicSettings
from .env import get_env_or_default as get_env_or_default
from .exceptions import PipelineAlreadyPublishedError as PipelineAlreadyPublishedError
from .exceptions import PipelineAssemblyError as PipelineAssemblyError
from .exceptions import TelemetryConfigurationError as TelemetryConfigurationError
from .pipeline import TelemetryPipeline as TelemetryPipeline
from .pipeline import assemble_pipeline as assemble_pipeline
from .properties import system_properties as system_properties
from .state import get_pipeline as get_pipeline
from .state import publish_pipeline as publish_pipeline
