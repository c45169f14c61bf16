from .csv_export import (
    DEFAULT_LOCALE,
    ExportBreakdowns,
    ExportDocument,
    ExportLocale,
    build_export_document,
    export_filename,
    generate_export,
)

__all__ = [
    "DEFAULT_LOCALE",
    "ExportBreakdowns",
    "ExportDocument",
    "ExportLocale",
    "build_export_document",
    "export_filename",
    "generate_export",
]
