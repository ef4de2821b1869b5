from typing import Any, Dict, List, Optional

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response


class ResponseBuilder:
    """Builder class for creating the portal's flat JSON responses.

    Payload keys are placed next to ``success`` rather than under a ``data``
    envelope, matching what the registration and librarian screens read.
    """

    @staticmethod
    def _request_id(request: Request) -> Optional[str]:
        return getattr(request.state, "request_id", None)

    @staticmethod
    def success(
        request: Request,
        payload: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        """Create a success response"""
        content = {"success": True}
        if payload:
            content.update(jsonable_encoder(payload))
        request_id = ResponseBuilder._request_id(request)
        if request_id:
            content["requestId"] = request_id
        return JSONResponse(status_code=status_code, content=content)

    @staticmethod
    def error(
        request: Request,
        message: str = "An error occurred",
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        field: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ) -> JSONResponse:
        """Create an error response"""
        content: Dict[str, Any] = {"success": False, "error": message}
        if error_code:
            content["errorCode"] = error_code
        if field:
            content["field"] = field
        if errors:
            content["errors"] = jsonable_encoder(errors)
        request_id = ResponseBuilder._request_id(request)
        if request_id:
            content["requestId"] = request_id
        return JSONResponse(status_code=status_code, content=content)

    @staticmethod
    def file(content: bytes, filename: str, media_type: str) -> Response:
        """Create a download response for an exported document"""
        return Response(
            content=content,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
