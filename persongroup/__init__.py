"""
Core package init for the person-group identity resolver.

Makes the `persongroup` modules importable without requiring an editable install.
"""

__all__ = [
    "config",
    "errors",
    "export",
    "io_utils",
    "labels",
    "matching",
    "resolution",
    "services",
    "store",
    "types",
]
