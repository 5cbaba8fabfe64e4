from .orchestrator import NotePipeline, PipelineOutcome, PipelineSettings

__all__ = ["NotePipeline", "PipelineOutcome", "PipelineSettings"]
