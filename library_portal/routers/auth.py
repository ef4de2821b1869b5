from fastapi import APIRouter, Depends, Request

from library_portal.middlewares.auth_middleware import get_bearer_token
from library_portal.schemas.auth_schemas import LibrarianLoginRequest, LoginRequest
from library_portal.services.auth_service import AuthService, get_auth_service
from library_portal.services.student_service import StudentService, get_student_service
from library_portal.utils.responses import ResponseBuilder

auth_router = APIRouter()


@auth_router.post("/login")
async def login(
    login_request: LoginRequest,
    request: Request,
    student_service: StudentService = Depends(get_student_service),
):
    """
    Student login with an email, PRN or mobile number.

    Returns the identity provider's access token, which the student presents
    as a bearer token to read their profile.
    """
    session = await student_service.login(
        login_request.identifier, login_request.password
    )
    return ResponseBuilder.success(
        request=request,
        payload={"accessToken": session["access_token"], "user": session["user"]},
    )


@auth_router.post("/librarian-login")
async def librarian_login(
    login_request: LibrarianLoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
):
    result = auth_service.authenticate_librarian(
        login_request.email, login_request.password
    )
    return ResponseBuilder.success(request=request, payload=result)


@auth_router.get("/student-profile")
async def student_profile(
    request: Request,
    access_token: str = Depends(get_bearer_token),
    student_service: StudentService = Depends(get_student_service),
):
    """Profile of the student who owns the bearer token"""
    student = await student_service.get_profile(access_token)
    return ResponseBuilder.success(
        request=request,
        payload={"student": student.model_dump(by_alias=True, exclude_none=True)},
    )
