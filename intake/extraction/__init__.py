"""
Extraction engine: deterministic workbook -> Canonical Order conversion.
"""

from intake.extraction.config import ParserConfig, DEFAULT_PARSER_CONFIG, PARSER_VERSION
from intake.extraction.extractor import ExtractionResult, OrderExtractor

__all__ = [
    "ParserConfig",
    "DEFAULT_PARSER_CONFIG",
    "PARSER_VERSION",
    "ExtractionResult",
    "OrderExtractor",
]
