# Proof conversion services

from .dispatcher import ConversionDispatcher
from .engine import (
    CommandConversionEngine,
    ConversionEngine,
    ProcessPoolConversionEngine,
    get_conversion_engine,
)
from .job_ledger import JobLedger, ShutdownFlag
from .orchestrator import PipelineOrchestrator, get_pipeline_orchestrator
from .output_writer import OutputWriter
from .resolver import CandidateResolver
from .transcoder import FormatTranscoder
from .watcher import IngestionWatcher

__all__ = [
    # Discovery and dedup
    "IngestionWatcher",
    "JobLedger",
    "ShutdownFlag",
    # Stages
    "CandidateResolver",
    "FormatTranscoder",
    "ConversionDispatcher",
    "OutputWriter",
    # Engines
    "ConversionEngine",
    "ProcessPoolConversionEngine",
    "CommandConversionEngine",
    "get_conversion_engine",
    # Orchestration
    "PipelineOrchestrator",
    "get_pipeline_orchestrator",
]
