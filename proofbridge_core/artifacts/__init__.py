"""
Canonical artifact and job models.

Exports:
    - ArtifactPattern: Filename recognizer for `{start}{delim}{end}.{ext}`
    - ArtifactReference: Parsed artifact filename with its block range
    - Job / JobStatus: Per-artifact unit of work and its lifecycle
    - IntermediateDocument: Transcoder output, engine input
    - ConvertedArtifact / OutputRecord: Engine output and its persisted form
    - PipelineState: Orchestrator lifecycle states
"""

from proofbridge_core.artifacts.models import (
    ArtifactPattern,
    ArtifactReference,
    ConvertedArtifact,
    IntermediateDocument,
    Job,
    JobStatus,
    OutputRecord,
    PipelineState,
)

__all__ = [
    "ArtifactPattern",
    "ArtifactReference",
    "ConvertedArtifact",
    "IntermediateDocument",
    "Job",
    "JobStatus",
    "OutputRecord",
    "PipelineState",
]
