"""
Central warning filter configuration for API and worker processes.
"""

import warnings


def configure_warning_filters() -> None:
    """Silence known noisy library warnings."""
    # google-genai warns when .text is read from a response with non-text parts
    warnings.filterwarnings(
        "ignore",
        message=r".*non-text parts in the response.*",
    )
    warnings.filterwarnings(
        "ignore",
        category=DeprecationWarning,
        module=r"fitz(\..*)?|pymupdf(\..*)?",
    )
    warnings.filterwarnings(
        "ignore",
        message=r".*Pydantic serializer warnings.*",
        category=UserWarning,
    )
