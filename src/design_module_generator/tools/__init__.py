"""Deterministic tools for section detection, scoring, validation and assembly."""

from .assembler import Assembler
from .field_mapper import FieldMapper
from .quality_scorer import QualityScorer
from .schema_validator import SchemaValidator
from .section_splitter import SectionSplitter

__all__ = [
    "Assembler",
    "FieldMapper",
    "QualityScorer",
    "SchemaValidator",
    "SectionSplitter",
]
