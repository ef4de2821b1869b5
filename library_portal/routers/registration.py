import json
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from library_portal.schemas.student_schemas import RegisterStudentRequest
from library_portal.services.student_service import (
    PhotoUpload,
    StudentService,
    get_student_service,
)
from library_portal.utils.errors import ValidationError
from library_portal.utils.responses import ResponseBuilder

registration_router = APIRouter()


def _parse_student_data(raw: Any) -> Any:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("studentData must be a JSON object", field="studentData")
    return raw


async def _read_multipart(request: Request) -> Tuple[Dict[str, Any], Optional[PhotoUpload]]:
    form = await request.form()
    payload = {
        "email": form.get("email"),
        "password": form.get("password"),
        "studentData": _parse_student_data(form.get("studentData")),
    }

    photo = None
    part = form.get("photo")
    if isinstance(part, UploadFile):
        photo = PhotoUpload(
            data=await part.read(),
            filename=part.filename or "photo.jpg",
            content_type=part.content_type or "application/octet-stream",
        )
    return payload, photo


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


@registration_router.post("/register-student", status_code=status.HTTP_200_OK)
async def register_student(
    request: Request,
    student_service: StudentService = Depends(get_student_service),
):
    """
    Register a student.

    Accepts either a JSON body ``{email, password, studentData}`` or a
    multipart form with the same fields (``studentData`` as JSON text) and a
    ``photo`` file. The passport photo is mandatory on the multipart form.
    """
    content_type = request.headers.get("content-type", "")
    is_multipart = content_type.startswith("multipart/form-data")
    if is_multipart:
        payload, photo = await _read_multipart(request)
    else:
        payload, photo = await _read_json(request), None

    try:
        body = RegisterStudentRequest.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first["loc"])
        raise ValidationError(f"{field}: {first['msg']}", field=field)

    record = await student_service.register(
        body.email,
        body.password,
        body.student_data,
        photo=photo,
        photo_required=is_multipart,
    )
    return ResponseBuilder.success(
        request=request,
        payload={"libraryNumber": record.library_number, "userId": record.user_id},
    )
