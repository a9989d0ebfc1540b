from pydantic import BaseModel, Field

from pipeline.models import AssemblyResult


class ErrorResponse(BaseModel):
    code: str
    message: str


class ExportRequest(BaseModel):
    channels: list[str] = Field(min_length=1)
    start: int = Field(ge=0)
    duration: int = Field(gt=0)
    format: str = "m4a"


class ExportResponse(BaseModel):
    path: str
    format: str
    slices: int
    size_bytes: int
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: AssemblyResult) -> "ExportResponse":
        return cls(
            path=result.output_path or "",
            format=result.output_format.value,
            slices=result.slices_processed,
            size_bytes=result.bytes_written,
            warnings=list(result.warnings),
        )


class SegmentItem(BaseModel):
    channel_id: str
    start: int
    end: int
    url: str
