from pydantic import Field
from .camel_base_model import CamelCaseBaseModel as BaseModel


class LoginRequest(BaseModel):
    """Student login; identifier is an email, a 10-digit PRN or a mobile number"""

    identifier: str = Field(..., min_length=1, description="Email, PRN or mobile")
    password: str = Field(..., min_length=1, description="Password")


class LibrarianLoginRequest(BaseModel):
    """Librarian login schema"""

    email: str = Field(..., min_length=1, description="Librarian email")
    password: str = Field(..., min_length=1, description="Librarian password")
