from .status_normalizer import (
    get_status_label,
    infer_from_keywords,
    is_failure,
    is_success,
    is_terminal,
    normalize,
    register_mapping,
)

__all__ = [
    "get_status_label",
    "infer_from_keywords",
    "is_failure",
    "is_success",
    "is_terminal",
    "normalize",
    "register_mapping",
]
