"""HTTP surface of the sentiment pipeline."""

from .service import PipelineService, create_store

__all__ = ['PipelineService', 'create_store']
