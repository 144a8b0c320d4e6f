import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from starlette.requests import ClientDisconnect

from ..errors import DecodeError
from ..pipeline import UplinkPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["uplink"])

JSON_MEDIA_TYPE = "application/json"
INVALID_PAYLOAD_DETAIL = "Invalid JSON or MessagePack payload"


def get_pipeline(request: Request) -> UplinkPipeline:
    return request.app.state.pipeline


def _media_type(content_type: str) -> str:
    # parameters such as charset are not part of the comparison
    return content_type.split(";", 1)[0].strip().lower()


@router.post("/uplink/")
async def process_uplink(request: Request, pipeline: UplinkPipeline = Depends(get_pipeline)):
    """Accept one uplink from the network server's HTTP integration."""

    content_type = request.headers.get("content-type")
    if content_type and _media_type(content_type) != JSON_MEDIA_TYPE:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Content-Type header is not application/json",
        )

    try:
        body = await request.body()
    except ClientDisconnect as exc:
        logger.warning("Unable to read uplink body: client disconnected")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_PAYLOAD_DETAIL) from exc

    try:
        await pipeline.process(body)
    except DecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_PAYLOAD_DETAIL) from exc

    return Response(status_code=status.HTTP_200_OK)
