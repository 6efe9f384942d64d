# Marking engine
from signylite.engine.audit import AuditPageRenderer, AuditRecord, build_audit_record
from signylite.engine.document import DocumentKind, Page, SourceDocument, load_document
from signylite.engine.errors import (
    LoadError,
    MarkingError,
    MissingInputError,
    PlacementOutOfRangeError,
    SerializeError,
    SessionBusyError,
)
from signylite.engine.freehand import PointerAction, PointerEvent, PointerSource, StrokeCanvas
from signylite.engine.geometry import (
    Color,
    Corner,
    Origin,
    PlacementSpec,
    ResolvedPlacement,
    apply_corner,
    clamp_page_index,
    corner_presets,
    map_placement,
)
from signylite.engine.mutate import DocumentMutator, OutputDocument, suggested_filename
from signylite.engine.render import (
    FontFamily,
    MarkContent,
    MarkRenderer,
    RasterImage,
    TiledPattern,
    TypedText,
)

__all__ = [
    "AuditPageRenderer",
    "AuditRecord",
    "build_audit_record",
    "DocumentKind",
    "Page",
    "SourceDocument",
    "load_document",
    "LoadError",
    "MarkingError",
    "MissingInputError",
    "PlacementOutOfRangeError",
    "SerializeError",
    "SessionBusyError",
    "PointerAction",
    "PointerEvent",
    "PointerSource",
    "StrokeCanvas",
    "Color",
    "Corner",
    "Origin",
    "PlacementSpec",
    "ResolvedPlacement",
    "apply_corner",
    "clamp_page_index",
    "corner_presets",
    "map_placement",
    "DocumentMutator",
    "OutputDocument",
    "suggested_filename",
    "FontFamily",
    "MarkContent",
    "MarkRenderer",
    "RasterImage",
    "TiledPattern",
    "TypedText",
]
