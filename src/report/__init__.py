from .assembler import ChartSlice, ReportAssembler, ReportKind, ReportRenderer, ReportRequest
from .analysis import AnalysisResult, AnalysisService

__all__ = [
    "ChartSlice",
    "ReportAssembler",
    "ReportKind",
    "ReportRenderer",
    "ReportRequest",
    "AnalysisResult",
    "AnalysisService",
]
