import io
import json
import uuid
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from library_portal.config.settings import settings
from library_portal.main import create_application
from library_portal.schemas.student_schemas import StudentData, StudentRecord
from library_portal.services.export.id_cards import (
    IDCardExportService,
    IDCardRenderer,
    get_id_card_export_service,
)
from library_portal.services.record_store import RecordStore
from library_portal.services.student_service import StudentService, get_student_service
from library_portal.utils.errors import AuthenticationError, IdentityConflictError

SERVICE_KEY = "test-service-key"
LIBRARIAN_EMAIL = "librarian@college.test"
LIBRARIAN_PASSWORD = "shelf-Secret-42"
PHOTO_HOST = "https://photos.test"


class InMemoryRecordStore(RecordStore):
    """RecordStore double; values go through JSON like they do in Redis."""

    def __init__(self):
        self.data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def scan_by_prefix(self, prefix: str) -> List[Any]:
        return [json.loads(raw) for key, raw in self.data.items() if key.startswith(prefix)]

    async def write_batch(
        self, set_items: Dict[str, Any], delete_keys: Iterable[str] = ()
    ) -> None:
        for key in delete_keys:
            self.data.pop(key, None)
        for key, value in set_items.items():
            self.data[key] = json.dumps(value)

    def put(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)


class FakeIdentityGateway:
    """In-process stand-in for the hosted identity provider."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tokens: Dict[str, str] = {}

    async def create_user(self, email: str, password: str, metadata: Dict[str, Any]) -> str:
        if email in self.users:
            raise IdentityConflictError(
                "Registration failed: A user with this email address has already been registered"
            )
        user_id = str(uuid.uuid4())
        self.users[email] = {"id": user_id, "password": password, "metadata": metadata}
        return user_id

    async def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        user = self.users.get(email)
        if not user or user["password"] != password:
            raise AuthenticationError("Invalid credentials", "INVALID_CREDENTIALS")
        token = f"token-{user['id']}"
        self.tokens[token] = user["id"]
        return {"access_token": token, "user": {"id": user["id"], "email": email}}

    async def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        user_id = self.tokens.get(access_token)
        return {"id": user_id} if user_id else None


def make_student_data(**overrides) -> Dict[str, Any]:
    """Registration form payload (camelCase, as the portal sends it)."""
    data = {
        "name": "Asha Patil",
        "prn": "2021000001",
        "email": "asha@college.test",
        "course": "CSE",
        "mobile": "9876500001",
        "parentMobile": "9876500002",
        "rollNumber": "CSE-01",
        "gender": "Female",
        "bloodGroup": "O+",
        "category": "General",
        "dateOfBirth": "15/06/1999",
        "admittedYear": "2021",
        "permanentAddress": "12 MG Road, Pune",
        "localAddress": "Girls Hostel B",
    }
    data.update(overrides)
    return data


def make_record(user_id: Optional[str] = None, **overrides) -> StudentRecord:
    user_id = user_id or str(uuid.uuid4())
    fields = make_student_data(dateOfBirth="1999-06-15")
    fields.update(
        {
            "userId": user_id,
            "libraryNumber": f"LIB24{abs(hash(user_id)) % 90000 + 10000}",
            "registrationDate": "2024-07-01T09:30:00+00:00",
        }
    )
    fields.update(overrides)
    return StudentRecord.model_validate(fields)


def seed_record(store: InMemoryRecordStore, record: StudentRecord) -> StudentRecord:
    store.put(f"{settings.STUDENT_RECORD_PREFIX}{record.user_id}", record.to_store())
    if record.prn:
        store.put(f"{settings.STUDENT_PRN_INDEX_PREFIX}{record.prn}", record.user_id)
    if record.mobile:
        store.put(f"{settings.STUDENT_PHONE_INDEX_PREFIX}{record.mobile}", record.user_id)
    return record


def make_png(size=(60, 72), color="navy") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def identity() -> FakeIdentityGateway:
    return FakeIdentityGateway()


@pytest.fixture
def storage() -> Mock:
    """MinIO service double: uploads succeed and URLs are signed per object."""
    service = Mock()
    service.upload_bytes = AsyncMock(
        side_effect=lambda data, object_name, content_type="application/octet-stream": {
            "object_name": object_name,
            "size": len(data),
        }
    )
    service.generate_presigned_url = AsyncMock(
        side_effect=lambda object_name, expires_in_hours=None: {
            "object_name": object_name,
            "presigned_url": f"{PHOTO_HOST}/{object_name}?signature=abc",
        }
    )
    return service


@pytest.fixture
def student_service(record_store, identity, storage) -> StudentService:
    return StudentService(record_store, identity, storage)


@pytest.fixture
def student_data() -> StudentData:
    return StudentData.model_validate(make_student_data())


@pytest.fixture
def card_renderer() -> IDCardRenderer:
    return IDCardRenderer(
        portal_url="https://portal.college.test",
        institution_name="Test College of Engineering",
        institution_subtitle="Pune Campus",
    )


@pytest.fixture
def photo_transport() -> httpx.MockTransport:
    """Serves a PNG for every photo URL except ones containing 'missing'."""
    png = make_png()

    def handler(request: httpx.Request) -> httpx.Response:
        if "missing" in request.url.path:
            return httpx.Response(404)
        return httpx.Response(200, content=png, headers={"Content-Type": "image/png"})

    return httpx.MockTransport(handler)


@pytest.fixture
def service_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {SERVICE_KEY}"}


@pytest.fixture
def client(monkeypatch, student_service, card_renderer, photo_transport):
    """API client wired to the in-memory collaborators."""
    monkeypatch.setattr(settings, "SERVICE_API_KEY", SERVICE_KEY)
    monkeypatch.setattr(settings, "LIBRARIAN_EMAIL", LIBRARIAN_EMAIL)
    monkeypatch.setattr(settings, "LIBRARIAN_PASSWORD", LIBRARIAN_PASSWORD)

    app = create_application()
    app.dependency_overrides[get_student_service] = lambda: student_service
    app.dependency_overrides[get_id_card_export_service] = lambda: IDCardExportService(
        renderer=card_renderer, transport=photo_transport
    )

    with TestClient(app) as test_client:
        yield test_client
