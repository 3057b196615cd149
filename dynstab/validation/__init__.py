"""
dynstab Validation Module

Validates the input table before any stage runs.

Exports:
    - validate_frame: Check a community table (raises DataFormatError)
    - block_from_frame: Validate and convert to a TimeSeriesBlock
    - InputValidationReport: Counts and warnings from validation
"""

from .input_validation import (
    validate_frame,
    block_from_frame,
    InputValidationReport,
)

__all__ = [
    'validate_frame',
    'block_from_frame',
    'InputValidationReport',
]
