from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, Path, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from library_portal.schemas.student_schemas import StudentUpdateRequest
from library_portal.services.export.id_cards import (
    IDCardExportService,
    get_id_card_export_service,
)
from library_portal.services.export.spreadsheet import export_students
from library_portal.services.student_filter import filter_students
from library_portal.services.student_service import StudentService, get_student_service
from library_portal.utils.errors import ValidationError
from library_portal.utils.responses import ResponseBuilder

students_router = APIRouter()

UserId = Annotated[str, Path(min_length=1, description="Identity provider user id")]
SearchQuery = Annotated[Optional[str], Query(description="Name, PRN, email or library number")]
CourseQuery = Annotated[Optional[str], Query(description="Course code, or 'all'")]
AdmittedYearQuery = Annotated[
    Optional[str], Query(alias="admittedYear", description="Admitted year, or 'all'")
]


@students_router.get("/students")
async def list_students(
    request: Request,
    student_service: StudentService = Depends(get_student_service),
):
    students = await student_service.list_all()
    return ResponseBuilder.success(
        request=request,
        payload={
            "students": [
                student.model_dump(by_alias=True, exclude_none=True) for student in students
            ]
        },
    )


@students_router.put("/student/{user_id}")
async def update_student(
    request: Request,
    user_id: UserId,
    update_request: StudentUpdateRequest,
    student_service: StudentService = Depends(get_student_service),
):
    """Merge the supplied fields into the student's record."""
    student = await student_service.update(user_id, update_request.changes())
    return ResponseBuilder.success(
        request=request,
        payload={"student": student.model_dump(by_alias=True, exclude_none=True)},
    )


@students_router.delete("/student/{user_id}")
async def delete_student(
    request: Request,
    user_id: UserId,
    student_service: StudentService = Depends(get_student_service),
):
    await student_service.delete(user_id)
    return ResponseBuilder.success(request=request)


@students_router.post("/upload-photo")
async def upload_photo(
    request: Request,
    photo: Optional[UploadFile] = File(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    student_service: StudentService = Depends(get_student_service),
):
    if photo is None or not user_id:
        raise ValidationError("Missing file or user ID", field="photo" if photo is None else "userId")

    data = await photo.read()
    if not data:
        raise ValidationError("Missing file or user ID", field="photo")

    student = await student_service.upload_photo(
        user_id,
        data,
        photo.filename or "photo.jpg",
        photo.content_type or "application/octet-stream",
    )
    return ResponseBuilder.success(request=request, payload={"photoUrl": student.photo_url})


@students_router.post("/student/{user_id}/photo/relink")
async def relink_photo(
    request: Request,
    user_id: UserId,
    student_service: StudentService = Depends(get_student_service),
):
    """Issue a fresh signed URL for the stored photo and link it to the record."""
    student = await student_service.relink_photo(user_id)
    return ResponseBuilder.success(request=request, payload={"photoUrl": student.photo_url})


@students_router.get("/students/export/spreadsheet")
async def export_spreadsheet(
    search: SearchQuery = None,
    course: CourseQuery = None,
    admitted_year: AdmittedYearQuery = None,
    student_service: StudentService = Depends(get_student_service),
):
    """Download the filtered students as xlsx (CSV if the workbook cannot be built)."""
    students = filter_students(
        await student_service.list_all(), search, course, admitted_year
    )
    export = await run_in_threadpool(export_students, students)
    return ResponseBuilder.file(export.content, export.filename, export.media_type)


@students_router.get("/students/export/id-cards")
async def export_id_cards(
    search: SearchQuery = None,
    course: CourseQuery = None,
    admitted_year: AdmittedYearQuery = None,
    student_service: StudentService = Depends(get_student_service),
    export_service: IDCardExportService = Depends(get_id_card_export_service),
):
    """Download printable ID cards for the filtered students as one PDF."""
    students = filter_students(
        await student_service.list_all(), search, course, admitted_year
    )
    export = await export_service.export(students)
    return ResponseBuilder.file(export.content, export.filename, export.media_type)
