"""
Domain models for proof artifacts, jobs and pipeline state.

These models provide type-safe representations of the files flowing through
the pipeline: the artifact reference parsed from a filename, the Job that
tracks one artifact through its stages, and the documents produced at each
stage.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from proofbridge_core.runtime.errors import InvalidArtifactNameError


class JobStatus(str, Enum):
    """
    Lifecycle of a single Job.

    A Job only moves forward through DISCOVERED -> ACCEPTED -> TRANSCODING ->
    CONVERTING -> WRITTEN, and may jump to FAILED from any stage after
    ACCEPTED.
    """
    DISCOVERED = "discovered"
    ACCEPTED = "accepted"
    TRANSCODING = "transcoding"
    CONVERTING = "converting"
    WRITTEN = "written"
    FAILED = "failed"


_FORWARD_ORDER = [
    JobStatus.DISCOVERED,
    JobStatus.ACCEPTED,
    JobStatus.TRANSCODING,
    JobStatus.CONVERTING,
    JobStatus.WRITTEN,
]


class PipelineState(str, Enum):
    """States of the orchestrator itself."""
    INITIALIZING = "initializing"
    BACKFILL_SCANNING = "backfill_scanning"
    WATCHING = "watching"
    DRAINING = "draining"
    STOPPED = "stopped"


class ArtifactReference(BaseModel):
    """
    A proof artifact identified by its filename.

    The filename encodes the block range the proof covers.
    """
    filename: str = Field(..., description="Basename, e.g. 100_200.bin")
    start_block: int = Field(..., ge=0)
    end_block: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def stem(self) -> str:
        return self.filename.rsplit(".", 1)[0]

    def output_filename(self, suffix: str) -> str:
        """Replace the source extension with the conversion suffix."""
        return f"{self.stem}{suffix}"


class ArtifactPattern:
    """
    Recognizes artifact filenames of the form `{start}{delimiter}{end}.{extension}`.

    Usage:
        pattern = ArtifactPattern(delimiter="_", extension="bin")
        ref = pattern.parse("100_200.bin")
    """

    def __init__(self, delimiter: str = "_", extension: str = "bin"):
        if not delimiter:
            raise ValueError("Artifact delimiter must not be empty")
        self.delimiter = delimiter
        self.extension = extension.lstrip(".")
        self._regex = re.compile(
            rf"^(\d+){re.escape(self.delimiter)}(\d+)\.{re.escape(self.extension)}$"
        )

    def is_candidate(self, filename: str) -> bool:
        """True for non-hidden names carrying the raw proof extension."""
        return not filename.startswith(".") and filename.endswith(f".{self.extension}")

    def parse(self, filename: str) -> ArtifactReference:
        """
        Parse a filename into an ArtifactReference.

        Raises:
            InvalidArtifactNameError: If the name does not match, or start > end.
        """
        match = self._regex.match(filename)
        if not match:
            raise InvalidArtifactNameError(
                filename,
                message_debug=f"expected {{start}}{self.delimiter}{{end}}.{self.extension}",
            )

        start, end = int(match.group(1)), int(match.group(2))
        if start > end:
            raise InvalidArtifactNameError(
                filename, message_debug=f"start {start} is greater than end {end}"
            )

        return ArtifactReference(filename=filename, start_block=start, end_block=end)


class Job(BaseModel):
    """The tracked unit of work for one artifact."""
    reference: ArtifactReference
    path: str
    status: JobStatus = JobStatus.DISCOVERED
    error_code: Optional[str] = None

    def advance(self, status: JobStatus) -> None:
        """Move to the next forward stage; skipping or going back is a bug."""
        if self.status == JobStatus.FAILED or status == JobStatus.FAILED:
            raise ValueError("Use fail() to mark a job failed")
        if _FORWARD_ORDER.index(status) != _FORWARD_ORDER.index(self.status) + 1:
            raise ValueError(f"Illegal job transition {self.status.value} -> {status.value}")
        self.status = status

    def fail(self, error_code: str) -> None:
        if self.status in (JobStatus.DISCOVERED, JobStatus.WRITTEN):
            raise ValueError(f"Job cannot fail from {self.status.value}")
        self.status = JobStatus.FAILED
        self.error_code = error_code

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.WRITTEN, JobStatus.FAILED)


class IntermediateDocument(BaseModel):
    """
    Structured form of a proof after format transcoding.

    The exact wire shape belongs to the transcoding executable; only the
    fields the engine relies on are required. Extra fields (boot_info,
    sp1_version, ...) are preserved untouched.
    """
    proof: dict[str, Any]
    public_values: dict[str, Any]
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    def to_engine_input(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ConvertedArtifact(BaseModel):
    """Output of the conversion engine plus its provenance."""
    original_file: str
    payload: Any
    converted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class OutputRecord(BaseModel):
    """
    The persisted output document.

    Field aliases are the keys the settlement process reads.
    """
    timestamp: str
    original_file: str = Field(..., alias="originalFile")
    converted_proof: Any = Field(..., alias="convertedProof")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def build(cls, original_file: str, artifact: ConvertedArtifact) -> "OutputRecord":
        return cls(
            timestamp=artifact.converted_at.isoformat(),
            original_file=original_file,
            converted_proof=artifact.payload,
        )

    def to_json(self) -> str:
        # sorted keys keep output byte-identical across runs except timestamp
        return json.dumps(self.model_dump(by_alias=True), indent=2, sort_keys=True)
