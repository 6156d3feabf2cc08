"""
Invite code issuance and redemption against the local record store.

Issuance is a critical section: the look-up of an existing code for an application,
the uniqueness check of a freshly generated code and the insert all happen under a
single process-wide lock, so concurrent approvals of the same application cannot
produce two codes. The UNIQUE constraints on invite_codes back this up.

Redemption is lookup-by-code: the first redemption flips `used`, and with
codes.allow_repeated_redemption enabled (the default) later redemptions of the same
code keep succeeding so students can log in from several devices.
"""

import datetime
import logging
import re
import secrets
import string
import threading
from typing import Optional, Tuple

from portal.config import get_config_value
from portal.database import Database
from portal.errors import CodeGenerationError
from portal.models import (
    ApplicationStatus,
    ClassConfig,
    InviteCode,
    RedemptionResult,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
ID_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 9

_issue_lock = threading.Lock()

# "10:00 AM", "2:00 PM", "14:00"
_TIME_RE = re.compile(r"\d{1,2}:\d{2}\s?(?:AM|PM)?", re.IGNORECASE)
_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%Y-%m-%d", "%m/%d/%Y", "%d %B %Y")
_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%H:%M")


def generate_id(length: int = ID_LENGTH) -> str:
    """Random base-36 identifier."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def generate_code_string(prefix: Optional[str] = None, length: Optional[int] = None) -> str:
    prefix = prefix or get_config_value("codes.prefix", "TCP")
    length = length or get_config_value("codes.suffix_length", 6)
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    return f"{prefix}-{suffix}"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def parse_session_end(date_str: Optional[str], time_str: Optional[str]) -> Optional[datetime.datetime]:
    """
    Best-effort end time of a session described by free-form strings.

    The last clock time in time_str is taken as the end ("10:00 AM - 2:00 PM PST"
    ends at 2:00 PM). Time zone abbreviations are ignored. Returns None when either
    part is missing or unparseable.
    """
    if not date_str or not time_str:
        return None
    times = _TIME_RE.findall(time_str)
    if not times:
        return None
    end_time = re.sub(r"\s+", " ", times[-1].upper()).strip()
    for date_format in _DATE_FORMATS:
        for time_format in _TIME_FORMATS:
            try:
                return datetime.datetime.strptime(
                    f"{date_str.strip()} {end_time}", f"{date_format} {time_format}"
                )
            except ValueError:
                continue
    logger.debug(f"Could not parse session end from '{date_str}' '{time_str}'")
    return None


def last_session_end(config: ClassConfig) -> Optional[datetime.datetime]:
    ends = [parse_session_end(s.date, s.time) for s in config.all_sessions()]
    if not ends and config.date and config.time:
        ends = [parse_session_end(config.date, config.time)]
    ends = [end for end in ends if end is not None]
    return max(ends) if ends else None


class CodeIssuer:
    """Issues and redeems invite codes stored in the local database."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    def _unused_code_string(self) -> str:
        attempts = get_config_value("codes.max_generation_attempts", 10)
        for attempt in range(1, attempts + 1):
            candidate = generate_code_string()
            if self.db.get_code(candidate) is None:
                return candidate
            self.logger.warning(
                f"Generated invite code collided with an existing one (attempt {attempt}/{attempts})"
            )
        raise CodeGenerationError(attempts)

    def issue_code(self, application_id: str, email: str) -> Tuple[InviteCode, bool]:
        """
        Returns the application's code, creating it if needed.

        Returns:
            (code, created): created is False when an existing code was returned.
        """
        with _issue_lock:
            existing = self.db.get_code_for_application(application_id)
            if existing:
                self.logger.info(
                    f"Application {application_id} already has code {existing.code}; reusing it"
                )
                return existing, False

            attempts = get_config_value("codes.max_generation_attempts", 10)
            for _ in range(attempts):
                invite = InviteCode(
                    id=generate_id(),
                    code=self._unused_code_string(),
                    email=email,
                    application_id=application_id,
                    used=False,
                    generated_at=utc_now_iso(),
                )
                if self.db.insert_code(invite):
                    self.logger.info(f"Issued code {invite.code} for application {application_id}")
                    return invite, True

                # Another process sharing the database stored a row first
                existing = self.db.get_code_for_application(application_id)
                if existing:
                    self.logger.info(
                        f"Application {application_id} got code {existing.code} from another writer"
                    )
                    return existing, False
            raise CodeGenerationError(attempts)

    def redeem_code(
        self, code: str, config: Optional[ClassConfig] = None
    ) -> RedemptionResult:
        """
        Validates a code and marks it used.

        Args:
            code: The code as typed by the student; normalized before lookup.
            config: Current class config, needed only for session-based expiry.
        """
        normalized = normalize_code(code)
        if not normalized:
            return RedemptionResult(False, "No code provided")

        invite = self.db.get_code(normalized)
        if invite is None:
            self.logger.info(f"Redemption attempt with unknown code '{normalized}'")
            return RedemptionResult(
                False, "Invalid invitation code. Please check your email and try again."
            )

        if invite.used and not get_config_value("codes.allow_repeated_redemption", True):
            return RedemptionResult(
                False, "This code has already been redeemed. Each code can only be used once."
            )

        if get_config_value("codes.require_approved_application", False):
            application = self.db.get_application(invite.application_id)
            if application and application.status is not ApplicationStatus.APPROVED:
                return RedemptionResult(False, "Your application is no longer approved.")

        if config is not None and get_config_value("codes.expire_after_last_session", False):
            end = last_session_end(config)
            grace = datetime.timedelta(hours=get_config_value("codes.expiry_grace_hours", 24))
            if end and datetime.datetime.now() > end + grace:
                return RedemptionResult(False, "Class session has ended. Code expired.")

        if not invite.used:
            self.db.mark_code_used(normalized)
        return RedemptionResult(True)
