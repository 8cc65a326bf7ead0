"""
Availability Kernel

Pure rule-merge core for catalog item availability:
- Partial change sets where an empty field means "leave unchanged"
- Cross-field validation of the merged rules
- One date-expansion implementation shared by validation and previews
- Typed exceptions and structured JSON logging
"""

__version__ = "0.1.0"
