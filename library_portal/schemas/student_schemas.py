from enum import Enum
from typing import Dict, Optional

from pydantic import ConfigDict, Field, field_validator

from library_portal.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class PhotoStatus(str, Enum):
    PENDING = "pending"
    LINKED = "linked"


class StudentData(BaseModel):
    """Registration form fields as submitted; presence and format are checked by the service."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    prn: Optional[str] = None
    email: Optional[str] = None
    course: Optional[str] = None
    mobile: Optional[str] = None
    parent_mobile: Optional[str] = None
    roll_number: Optional[str] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = None
    category: Optional[str] = None
    date_of_birth: Optional[str] = None
    admitted_year: Optional[str] = None
    permanent_address: Optional[str] = None
    local_address: Optional[str] = None

    @field_validator("*", mode="before")
    def coerce_scalars(cls, v):
        # Numeric-looking inputs (PRN, mobile, year) may arrive as JSON numbers
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v


class RegisterStudentRequest(BaseModel):
    email: Optional[str] = Field(None, description="Account email")
    password: Optional[str] = Field(None, description="Account password")
    student_data: StudentData = Field(default_factory=StudentData)


class StudentRecord(StudentData):
    """A stored student, keyed by the identity provider's user id."""

    user_id: str = Field(..., description="Identity provider user id")
    library_number: str = Field(..., description="LIB + 2-digit year + 5 digits")
    registration_date: str = Field(..., description="ISO-8601 UTC timestamp")
    photo_url: Optional[str] = None
    photo_object_name: Optional[str] = None
    photo_status: Optional[PhotoStatus] = None

    def to_store(self) -> Dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


class StudentUpdateRequest(StudentData):
    """Partial librarian edit; only the fields sent are merged.

    ``userId``, ``libraryNumber`` and ``registrationDate`` are not fields here,
    so values sent for them are dropped on parsing.
    """

    photo_url: Optional[str] = None

    def changes(self) -> Dict[str, object]:
        # Explicit nulls are dropped, an edit never deletes a field
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


class DashboardStats(BaseModel):
    total_students: int = Field(..., description="Number of stored students")
    new_registrations: int = Field(
        ..., description="Students registered within the trailing window"
    )
    course_distribution: Dict[str, int] = Field(
        default_factory=dict, description="Course code to student count, first-seen order"
    )
