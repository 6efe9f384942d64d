"""
Local document marking API.
Paths: /v1/documents/inspect, /v1/documents/mark

Each request runs in its own MarkingSession, which is closed before the
response is returned. Nothing is stored between requests.
"""
from typing import Union
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from signylite.config import Settings, get_settings
from signylite.engine.errors import MarkingError
from signylite.engine.render import FontFamily
from signylite.exceptions import exception_from_status
from signylite.models import InspectRequest, InspectResponse, MarkRequest
from signylite.session import MarkingSession, MarkMode, Status, StatusReport
from signylite.utils.logging import fingerprint, get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/v1/documents",
    tags=["documents"],
)

ERROR_RESPONSES = {
    400: {"description": "Missing document or mark"},
    409: {"description": "Session busy"},
    422: {"description": "Unreadable document or rejected placement"},
    500: {"description": "Output could not be written"},
}


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and the UTF-8 name."""
    fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _raise_failure(error: Union[MarkingError, StatusReport]):
    if isinstance(error, MarkingError):
        error = StatusReport(Status.FAILURE, error.message, error.code)
    raise exception_from_status(error)


async def _open_session(request_body, settings: Settings) -> MarkingSession:
    session = MarkingSession(settings=settings)
    result = await session.load_source(request_body.document_bytes(), request_body.filename)
    if not result.ok:
        session.close()
        _raise_failure(result.report)
    return session


def _select_mark(session: MarkingSession, request_body: MarkRequest) -> None:
    mode = request_body.mode
    if mode == MarkMode.IMAGE:
        session.set_image(request_body.image_bytes())
    elif mode == MarkMode.DRAWING:
        canvas = session.use_drawing()
        for stroke in request_body.strokes or []:
            canvas.draw_stroke(stroke)
    elif mode == MarkMode.WATERMARK:
        session.set_watermark(
            request_body.text or "",
            opacity=request_body.opacity,
            size=request_body.watermark_size,
            font=request_body.font or FontFamily.SANS,
        )
    else:
        session.set_text(request_body.text or "", font=request_body.font or FontFamily.SANS_OBLIQUE)


@router.post("/inspect", response_model=InspectResponse, responses=ERROR_RESPONSES)
async def inspect_document(
    request_body: InspectRequest,
    settings: Settings = Depends(get_settings),
):
    """Page geometry, fingerprint and quick-corner presets of a document."""
    session = await _open_session(request_body, settings)
    try:
        session.set_placement(page=request_body.page, size=request_body.size)
        if request_body.text:
            session.set_text(request_body.text, font=request_body.font)
        info = session.inspect()
    except MarkingError as e:
        _raise_failure(e)
    finally:
        session.close()

    return InspectResponse(**info)


@router.post(
    "/mark",
    response_class=Response,
    responses={
        200: {
            "content": {"application/pdf": {}, "image/png": {}},
            "description": "The marked document",
        },
        **ERROR_RESPONSES,
    },
)
async def mark_document(
    request_body: MarkRequest,
    settings: Settings = Depends(get_settings),
):
    """
    Apply a mark and return the new document as the response body.

    Headers:
    - Content-Disposition: suggested download name
    - X-Content-Fingerprint: SHA-256 of the original input
    - X-Signylite-Status: final session status
    """
    session = await _open_session(request_body, settings)
    try:
        _select_mark(session, request_body)
        placement = request_body.placement
        session.set_placement(
            page=placement.page,
            x=placement.x,
            y=placement.y,
            size=placement.size,
            color=placement.color,
        )
        if placement.corner is not None:
            session.apply_corner(placement.corner)

        result = await session.sign(audit=request_body.audit, date_stamp=request_body.date_stamp)
    except MarkingError as e:
        _raise_failure(e)
    finally:
        session.close()

    if not result.ok:
        _raise_failure(result.report)

    output = result.output
    logger.info(
        f"Returning {fingerprint(output.filename, 'file_')} "
        f"({output.media_type}, {output.byte_length} bytes)"
    )
    return Response(
        content=output.data,
        media_type=output.media_type,
        headers={
            "Content-Disposition": content_disposition(output.filename),
            "X-Content-Fingerprint": output.fingerprint,
            "X-Signylite-Status": result.report.status.value,
            "X-Signylite-Page": str(output.placement.page_number),
            "X-Signylite-Page-Count": str(output.page_count),
        },
    )
