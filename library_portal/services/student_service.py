import random
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import Depends

from library_portal.config.settings import settings
from library_portal.schemas.student_schemas import (
    PhotoStatus,
    StudentData,
    StudentRecord,
)
from library_portal.services.identity_gateway import (
    IdentityGateway,
    get_identity_gateway,
)
from library_portal.services.minio_service import MinIOService, get_minio_service
from library_portal.services.record_store import RecordStore, get_record_store
from library_portal.utils.datetime_utils import (
    DISPLAY_DATE_PATTERN,
    parse_calendar_date,
    utc_now,
)
from library_portal.utils.errors import (
    AuthenticationError,
    FormatError,
    IdentityConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from library_portal.utils.logging import get_logger

logger = get_logger()

TEN_DIGITS = re.compile(r"^\d{10}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# (attribute, wire name, label) in the order the registration form reports them
REQUIRED_REGISTRATION_FIELDS = [
    ("name", "name", "Name"),
    ("prn", "prn", "PRN Number"),
    ("email", "email", "Email"),
    ("password", "password", "Password"),
    ("gender", "gender", "Gender"),
    ("course", "course", "Course"),
    ("blood_group", "bloodGroup", "Blood Group"),
    ("mobile", "mobile", "Mobile Number"),
    ("parent_mobile", "parentMobile", "Parent Mobile Number"),
    ("date_of_birth", "dateOfBirth", "Date of Birth"),
]

LIBRARY_NUMBER_ATTEMPTS = 20


@dataclass
class PhotoUpload:
    data: bytes
    filename: str
    content_type: str = "application/octet-stream"


def normalize_date_of_birth(value: str, today: Optional[date] = None) -> str:
    """Validate a date of birth and return it as ``YYYY-MM-DD``.

    Accepts ``DD/MM/YYYY`` (the form's display format) or an ISO date. The
    date must exist on the calendar and must not be after ``today``.
    """
    parsed = parse_calendar_date(value)
    today = today or utc_now().date()
    if parsed is None or parsed > today:
        raise FormatError(
            "Please enter a valid date of birth in DD/MM/YYYY format",
            field="dateOfBirth",
        )
    return parsed.isoformat()


def validate_registration(
    email: Optional[str],
    password: Optional[str],
    data: StudentData,
    photo: Optional[PhotoUpload] = None,
    photo_required: bool = False,
    today: Optional[date] = None,
) -> str:
    """Check a registration in form order; raise on the first problem.

    Returns:
        The normalised date of birth
    """
    values = {"email": email, "password": password}
    for attribute, wire_name, label in REQUIRED_REGISTRATION_FIELDS:
        value = values[attribute] if attribute in values else getattr(data, attribute)
        if not value:
            raise ValidationError(f"{label} is required", field=wire_name)

    if photo_required and (photo is None or not photo.data):
        raise ValidationError("Passport size photo is required", field="photo")

    date_of_birth = normalize_date_of_birth(data.date_of_birth, today)

    if not TEN_DIGITS.match(data.prn):
        raise FormatError("PRN must be exactly 10 digits", field="prn")
    if not TEN_DIGITS.match(data.mobile):
        raise FormatError("Mobile number must be exactly 10 digits", field="mobile")
    if not TEN_DIGITS.match(data.parent_mobile):
        raise FormatError(
            "Parent mobile number must be exactly 10 digits", field="parentMobile"
        )
    if not EMAIL_PATTERN.match(email):
        raise FormatError("Please enter a valid email address", field="email")

    return date_of_birth


class StudentService:
    """Student records and their PRN / mobile lookup indexes."""

    def __init__(
        self,
        store: RecordStore,
        identity: IdentityGateway,
        storage: MinIOService,
    ):
        self.store = store
        self.identity = identity
        self.storage = storage

    # Keys

    @staticmethod
    def record_key(user_id: str) -> str:
        return f"{settings.STUDENT_RECORD_PREFIX}{user_id}"

    @staticmethod
    def prn_key(prn: str) -> str:
        return f"{settings.STUDENT_PRN_INDEX_PREFIX}{prn}"

    @staticmethod
    def phone_key(mobile: str) -> str:
        return f"{settings.STUDENT_PHONE_INDEX_PREFIX}{mobile}"

    # Reads

    async def _find_record(self, user_id: str) -> Optional[StudentRecord]:
        raw = await self.store.get(self.record_key(user_id))
        if not raw:
            return None
        return StudentRecord.model_validate(raw)

    async def _get_record(self, user_id: str) -> StudentRecord:
        record = await self._find_record(user_id)
        if record is None:
            raise NotFoundError("Student not found", "STUDENT_NOT_FOUND")
        return record

    async def list_all(self) -> List[StudentRecord]:
        """All stored students, oldest registration first."""
        records = []
        for raw in await self.store.scan_by_prefix(settings.STUDENT_RECORD_PREFIX):
            if not isinstance(raw, dict):
                logger.warning(f"Skipping non-record value under record prefix: {raw!r}")
                continue
            records.append(StudentRecord.model_validate(raw))

        records.sort(key=lambda r: (r.registration_date, r.user_id))
        logger.info(f"Listed {len(records)} student records")
        return records

    async def get_profile(self, access_token: Optional[str]) -> StudentRecord:
        if not access_token:
            raise AuthenticationError("Unauthorized")

        user = await self.identity.get_user(access_token)
        if not user:
            raise AuthenticationError("Unauthorized")

        record = await self._find_record(user["id"])
        if record is None:
            raise NotFoundError("Student data not found", "STUDENT_NOT_FOUND")
        return record

    # Registration and login

    async def _index_owner(self, key: str) -> Optional[str]:
        return await self.store.get(key)

    async def _ensure_identifiers_free(
        self, prn: Optional[str], mobile: Optional[str], user_id: Optional[str] = None
    ) -> None:
        if prn:
            owner = await self._index_owner(self.prn_key(prn))
            if owner and owner != user_id:
                raise IdentityConflictError(
                    "A student with this PRN is already registered", "PRN_ALREADY_REGISTERED"
                )
        if mobile:
            owner = await self._index_owner(self.phone_key(mobile))
            if owner and owner != user_id:
                raise IdentityConflictError(
                    "A student with this mobile number is already registered",
                    "MOBILE_ALREADY_REGISTERED",
                )

    async def _generate_library_number(self) -> str:
        year = f"{utc_now().year % 100:02d}"
        taken = {record.library_number for record in await self.list_all()}
        for _ in range(LIBRARY_NUMBER_ATTEMPTS):
            candidate = f"{settings.LIBRARY_NUMBER_PREFIX}{year}{random.randint(10000, 99999)}"
            if candidate not in taken:
                return candidate
        raise UpstreamError(
            "Could not allocate a free library number", "LIBRARY_NUMBER_EXHAUSTED"
        )

    async def register(
        self,
        email: Optional[str],
        password: Optional[str],
        student_data: StudentData,
        photo: Optional[PhotoUpload] = None,
        photo_required: bool = False,
    ) -> StudentRecord:
        """
        Create the identity account, the student record and both lookup indexes.

        Args:
            email: Account email, also stored on the record
            password: Account password, never stored on the record
            student_data: Registration form fields
            photo: Optional passport photo, linked after the record exists
            photo_required: Whether a missing photo fails validation

        Returns:
            The stored record
        """
        email = (email or student_data.email or "").strip()
        data = student_data.model_copy(update={"email": email})
        date_of_birth = validate_registration(
            email, password, data, photo=photo, photo_required=photo_required
        )
        data = data.model_copy(update={"date_of_birth": date_of_birth})

        await self._ensure_identifiers_free(data.prn, data.mobile)

        user_id = await self.identity.create_user(
            email, password, {"name": data.name, "role": "student", "prn": data.prn}
        )

        record = StudentRecord(
            **data.model_dump(),
            user_id=user_id,
            library_number=await self._generate_library_number(),
            registration_date=utc_now().isoformat(),
        )
        await self.store.set_many(
            {
                self.record_key(user_id): record.to_store(),
                self.prn_key(record.prn): user_id,
                self.phone_key(record.mobile): user_id,
            }
        )
        logger.info(
            f"Registered student {user_id} with library number {record.library_number}"
        )

        if photo is not None and photo.data:
            try:
                record = await self.upload_photo(
                    user_id, photo.data, photo.filename, photo.content_type
                )
            except UpstreamError as e:
                # The account exists; the photo can be uploaded again later
                logger.error(f"Photo upload after registration failed for {user_id}: {e}")

        return record

    async def resolve_login_email(self, identifier: str) -> str:
        """Map an email, PRN or mobile number to the account email."""
        identifier = identifier.strip()
        if "@" in identifier:
            return identifier

        user_id = None
        if TEN_DIGITS.match(identifier):
            user_id = await self.store.get(self.prn_key(identifier))
        if not user_id:
            user_id = await self.store.get(self.phone_key(identifier))
        if not user_id:
            raise NotFoundError("User not found", "USER_NOT_FOUND")

        record = await self._find_record(user_id)
        if record is None or not record.email:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return record.email

    async def login(self, identifier: str, password: str) -> Dict[str, Any]:
        email = await self.resolve_login_email(identifier)
        session = await self.identity.sign_in_with_password(email, password)
        logger.info(f"Student login succeeded for user {(session.get('user') or {}).get('id')}")
        return session

    # Librarian edits

    async def update(self, user_id: str, changes: Dict[str, Any]) -> StudentRecord:
        """
        Merge edited fields into a record.

        Formats are not re-validated here. PRN and mobile index entries follow
        the record so lookups stay consistent.
        """
        record = await self._get_record(user_id)
        changes = dict(changes)

        # Only the form's display format is normalised; other text is kept as sent
        dob = changes.get("date_of_birth")
        if isinstance(dob, str) and DISPLAY_DATE_PATTERN.match(dob.strip()):
            parsed = parse_calendar_date(dob)
            if parsed is not None:
                changes["date_of_birth"] = parsed.isoformat()

        updated = record.model_copy(update=changes)

        set_items: Dict[str, Any] = {}
        delete_keys: List[str] = []
        new_prn = updated.prn if updated.prn != record.prn else None
        new_mobile = updated.mobile if updated.mobile != record.mobile else None
        await self._ensure_identifiers_free(new_prn, new_mobile, user_id=user_id)

        if updated.prn != record.prn:
            if record.prn:
                delete_keys.append(self.prn_key(record.prn))
            if updated.prn:
                set_items[self.prn_key(updated.prn)] = user_id
        if updated.mobile != record.mobile:
            if record.mobile:
                delete_keys.append(self.phone_key(record.mobile))
            if updated.mobile:
                set_items[self.phone_key(updated.mobile)] = user_id

        set_items[self.record_key(user_id)] = updated.to_store()
        await self.store.write_batch(set_items, delete_keys)

        logger.info(f"Updated student {user_id}: {sorted(changes)}")
        return updated

    async def delete(self, user_id: str) -> None:
        record = await self._get_record(user_id)

        keys = [self.record_key(user_id)]
        if record.prn:
            keys.append(self.prn_key(record.prn))
        if record.mobile:
            keys.append(self.phone_key(record.mobile))
        await self.store.delete_many(keys)

        logger.info(f"Deleted student {user_id} ({record.library_number})")

    # Photos

    async def upload_photo(
        self,
        user_id: str,
        data: bytes,
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> StudentRecord:
        """
        Store a photo and link it to the record.

        The record is marked ``pending`` with the object name before the
        binary write and ``linked`` once the signed URL is stored, so an
        interrupted upload is visible and can be finished with relink_photo.
        """
        record = await self._get_record(user_id)

        extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else "jpg"
        object_name = f"{user_id}-{int(time.time() * 1000)}.{extension}"

        pending = record.model_copy(
            update={"photo_object_name": object_name, "photo_status": PhotoStatus.PENDING}
        )
        await self.store.set(self.record_key(user_id), pending.to_store())

        await self.storage.upload_bytes(data, object_name, content_type)
        return await self._link_photo(user_id, object_name)

    async def relink_photo(self, user_id: str) -> StudentRecord:
        """Re-sign the stored photo and (re)link it to the record."""
        record = await self._get_record(user_id)
        if not record.photo_object_name:
            raise NotFoundError("No photo uploaded for this student", "PHOTO_NOT_FOUND")
        return await self._link_photo(user_id, record.photo_object_name)

    async def _link_photo(self, user_id: str, object_name: str) -> StudentRecord:
        signed = await self.storage.generate_presigned_url(object_name)

        record = await self._get_record(user_id)
        linked = record.model_copy(
            update={
                "photo_url": signed["presigned_url"],
                "photo_object_name": object_name,
                "photo_status": PhotoStatus.LINKED,
            }
        )
        await self.store.set(self.record_key(user_id), linked.to_store())

        logger.info(f"Linked photo {object_name} to student {user_id}")
        return linked


def get_student_service(
    store: RecordStore = Depends(get_record_store),
    identity: IdentityGateway = Depends(get_identity_gateway),
    storage: MinIOService = Depends(get_minio_service),
) -> StudentService:
    return StudentService(store, identity, storage)
