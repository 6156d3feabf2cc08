"""Data models for the application.

Entities serialize to the camelCase JSON shapes used on the wire and in the
stored blobs; attributes are snake_case.
"""

import copy
import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_SCHEMA_VERSION = 2


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return (
        datetime.datetime.now(datetime.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value: Any) -> "ApplicationStatus":
        """Accepts enum members or their string values, case-insensitively."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


# --- Proof values ---


class ProofKind(str, Enum):
    TEXT = "text"
    LINK = "link"
    IMAGE = "image"


# Task/challenge proofType -> stored proof kind
PROOF_TYPE_KINDS = {
    "text": ProofKind.TEXT,
    "username": ProofKind.TEXT,
    "yes_no": ProofKind.TEXT,
    "link": ProofKind.LINK,
    "github": ProofKind.LINK,
    "image": ProofKind.IMAGE,
}


@dataclass(frozen=True)
class TextProof:
    text: str
    kind = ProofKind.TEXT

    @property
    def raw(self) -> str:
        return self.text


@dataclass(frozen=True)
class LinkProof:
    url: str
    kind = ProofKind.LINK

    @property
    def raw(self) -> str:
        return self.url


@dataclass(frozen=True)
class ImageProof:
    """An image proof: either an inline data URI or a hosted file URL."""

    ref: str
    kind = ProofKind.IMAGE

    @property
    def raw(self) -> str:
        return self.ref

    @property
    def is_inline(self) -> bool:
        return self.ref.startswith("data:image/")


ProofValue = Union[TextProof, LinkProof, ImageProof]


def make_proof(kind: Union[ProofKind, str], raw: str) -> ProofValue:
    kind = ProofKind(kind)
    if kind is ProofKind.IMAGE:
        return ImageProof(raw)
    if kind is ProofKind.LINK:
        return LinkProof(raw)
    return TextProof(raw)


def classify_legacy_proof(raw: str) -> ProofValue:
    """Tags a proof stored before kinds were recorded alongside it."""
    if raw.startswith("data:image/"):
        return ImageProof(raw)
    if raw.startswith("http://") or raw.startswith("https://"):
        return LinkProof(raw)
    return TextProof(raw)


# --- Applications and codes ---


@dataclass
class Application:
    """A submitted request for class access."""

    id: str
    email: str
    full_name: str
    why_join: str
    status: ApplicationStatus
    submitted_at: str
    task_proofs: Dict[str, ProofValue] = field(default_factory=dict)
    proof_statuses: Dict[str, str] = field(default_factory=dict)
    admin_note: Optional[str] = None
    wave: Optional[int] = None
    twitter_handle: Optional[str] = None
    referrer_id: Optional[str] = None
    quest_set_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "email": self.email,
                "fullName": self.full_name,
                "whyJoin": self.why_join,
                "taskProofs": {k: v.raw for k, v in self.task_proofs.items()},
                "proofKinds": {k: v.kind.value for k, v in self.task_proofs.items()},
                "proofStatuses": dict(self.proof_statuses),
                "status": self.status.value,
                "submittedAt": self.submitted_at,
                "adminNote": self.admin_note,
                "wave": self.wave,
                "twitterHandle": self.twitter_handle,
                "referrerId": self.referrer_id,
                "questSetId": self.quest_set_id,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Application":
        raw_proofs = data.get("taskProofs") or {}
        kinds = data.get("proofKinds") or {}
        task_proofs: Dict[str, ProofValue] = {}
        for task_id, raw in raw_proofs.items():
            raw = "" if raw is None else str(raw)
            if task_id in kinds:
                task_proofs[task_id] = make_proof(kinds[task_id], raw)
            else:
                task_proofs[task_id] = classify_legacy_proof(raw)

        wave = data.get("wave")
        return cls(
            id=str(data["id"]),
            email=data.get("email", ""),
            full_name=data.get("fullName", ""),
            why_join=data.get("whyJoin", ""),
            status=ApplicationStatus.parse(data.get("status", "pending")),
            submitted_at=data.get("submittedAt", ""),
            task_proofs=task_proofs,
            proof_statuses=dict(data.get("proofStatuses") or {}),
            admin_note=data.get("adminNote"),
            wave=int(wave) if wave not in (None, "") else None,
            twitter_handle=data.get("twitterHandle"),
            referrer_id=data.get("referrerId"),
            quest_set_id=data.get("questSetId"),
        )


@dataclass
class InviteCode:
    """Access code tied to exactly one application."""

    id: str
    code: str
    email: str
    application_id: str
    used: bool
    generated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "email": self.email,
            "applicationId": self.application_id,
            "used": self.used,
            "generatedAt": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InviteCode":
        used = data.get("used", False)
        return cls(
            id=str(data.get("id") or ""),
            code=str(data["code"]),
            email=data.get("email", ""),
            application_id=str(data.get("applicationId") or ""),
            # The spreadsheet collaborator may hand back the string "true"
            used=used is True or str(used).lower() == "true",
            generated_at=str(data.get("generatedAt") or ""),
        )


@dataclass
class RedemptionResult:
    valid: bool
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"valid": self.valid, "message": self.message})


@dataclass
class BatchResult:
    """Outcome of a batch operation; failures map id -> error message."""

    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.succeeded)


# --- Class configuration ---


@dataclass
class TaskConfig:
    id: str
    description: str
    requires_proof: bool = False
    proof_type: str = "text"
    link: Optional[str] = None
    proof_label: Optional[str] = None

    @property
    def proof_kind(self) -> ProofKind:
        return PROOF_TYPE_KINDS.get(self.proof_type, ProofKind.TEXT)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "description": self.description,
                "link": self.link,
                "requiresProof": self.requires_proof,
                "proofLabel": self.proof_label,
                "proofType": self.proof_type,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskConfig":
        return cls(
            id=str(data["id"]),
            description=data.get("description", ""),
            requires_proof=bool(data.get("requiresProof", False)),
            proof_type=data.get("proofType", "text"),
            link=data.get("link"),
            proof_label=data.get("proofLabel"),
        )


@dataclass
class ClassResource:
    id: str
    title: str
    description: str = ""
    url: str = ""
    type: str = "link"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassResource":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            url=data.get("url", ""),
            type=data.get("type", "link"),
        )


@dataclass
class ClassSession:
    id: str
    title: str
    date: str = ""
    time: str = ""
    location: str = ""
    instructor: str = ""
    description: Optional[str] = None
    max_attendees: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "date": self.date,
                "time": self.time,
                "location": self.location,
                "instructor": self.instructor,
                "maxAttendees": self.max_attendees,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassSession":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            date=data.get("date", ""),
            time=data.get("time", ""),
            location=data.get("location", ""),
            instructor=data.get("instructor", ""),
            description=data.get("description"),
            max_attendees=data.get("maxAttendees"),
        )


@dataclass
class LearningChallenge:
    id: str
    title: str
    description: str = ""
    proof_type: str = "text"
    xp: int = 0

    @property
    def proof_kind(self) -> ProofKind:
        return PROOF_TYPE_KINDS.get(self.proof_type, ProofKind.TEXT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "proofType": self.proof_type,
            "xp": self.xp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningChallenge":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            proof_type=data.get("proofType", "text"),
            xp=int(data.get("xp") or 0),
        )


@dataclass
class LearningModule:
    id: str
    title: str
    description: str = ""
    order: int = 0
    resources: List[ClassResource] = field(default_factory=list)
    challenges: List[LearningChallenge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "order": self.order,
            "resources": [r.to_dict() for r in self.resources],
            "challenges": [c.to_dict() for c in self.challenges],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LearningModule":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            order=int(data.get("order") or 0),
            resources=[ClassResource.from_dict(r) for r in data.get("resources") or []],
            challenges=[
                LearningChallenge.from_dict(c) for c in data.get("challenges") or []
            ],
        )


@dataclass
class QuestSet:
    """A themed bundle of tasks, sessions and modules applied to independently."""

    id: str
    title: str
    description: str = ""
    category: str = ""
    level: str = "Beginner"
    status: str = "draft"
    tasks: List[TaskConfig] = field(default_factory=list)
    sessions: List[ClassSession] = field(default_factory=list)
    resources: List[ClassResource] = field(default_factory=list)
    modules: List[LearningModule] = field(default_factory=list)
    instructor: Optional[str] = None
    capacity: Optional[int] = None
    extra_notes: Optional[str] = None
    custom_fields: Optional[Dict[str, str]] = None
    tutor: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "category": self.category,
                "level": self.level,
                "status": self.status,
                "tasks": [t.to_dict() for t in self.tasks],
                "sessions": [s.to_dict() for s in self.sessions],
                "resources": [r.to_dict() for r in self.resources],
                "modules": [m.to_dict() for m in self.modules],
                "instructor": self.instructor,
                "capacity": self.capacity,
                "extraNotes": self.extra_notes,
                "customFields": self.custom_fields,
                "tutor": self.tutor,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuestSet":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            category=data.get("category", ""),
            level=data.get("level", "Beginner"),
            status=data.get("status", "draft"),
            tasks=[TaskConfig.from_dict(t) for t in data.get("tasks") or []],
            sessions=[ClassSession.from_dict(s) for s in data.get("sessions") or []],
            resources=[ClassResource.from_dict(r) for r in data.get("resources") or []],
            modules=[LearningModule.from_dict(m) for m in data.get("modules") or []],
            instructor=data.get("instructor"),
            capacity=data.get("capacity"),
            extra_notes=data.get("extraNotes"),
            custom_fields=data.get("customFields"),
            tutor=data.get("tutor"),
        )


@dataclass
class ClassConfig:
    """Process-wide configuration of the open class. Saved as a whole document."""

    title: str
    description: str
    accepting_applications: bool = True
    capacity: Optional[int] = None
    tasks: List[TaskConfig] = field(default_factory=list)
    resources: List[ClassResource] = field(default_factory=list)
    sessions: List[ClassSession] = field(default_factory=list)
    quest_sets: List[QuestSet] = field(default_factory=list)
    modules: List[LearningModule] = field(default_factory=list)
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    instructor: Optional[str] = None
    extra_notes: Optional[str] = None
    last_updated: Optional[str] = None
    name_label: Optional[str] = None
    email_label: Optional[str] = None
    why_join_label: Optional[str] = None
    stats: Optional[Dict[str, int]] = None
    schema_version: int = CONFIG_SCHEMA_VERSION

    def find_quest_set(self, quest_set_id: Optional[str]) -> Optional[QuestSet]:
        if not quest_set_id:
            return None
        return next((q for q in self.quest_sets if q.id == quest_set_id), None)

    def tasks_for(self, quest_set_id: Optional[str] = None) -> List[TaskConfig]:
        """Global tasks plus those of the given quest set, deduplicated by id."""
        combined: Dict[str, TaskConfig] = {t.id: t for t in self.tasks}
        quest = self.find_quest_set(quest_set_id)
        if quest:
            combined.update({t.id: t for t in quest.tasks})
        return list(combined.values())

    def all_challenges(self) -> Dict[str, LearningChallenge]:
        """Every challenge of the global modules and all quest set modules, by id."""
        challenges: Dict[str, LearningChallenge] = {}
        modules = list(self.modules)
        for quest in self.quest_sets:
            modules.extend(quest.modules)
        for module in modules:
            for challenge in module.challenges:
                challenges.setdefault(challenge.id, challenge)
        return challenges

    def all_sessions(self) -> List[ClassSession]:
        sessions = list(self.sessions)
        for quest in self.quest_sets:
            sessions.extend(quest.sessions)
        return sessions

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "title": self.title,
                "description": self.description,
                "acceptingApplications": self.accepting_applications,
                "capacity": self.capacity,
                "tasks": [t.to_dict() for t in self.tasks],
                "resources": [r.to_dict() for r in self.resources],
                "sessions": [s.to_dict() for s in self.sessions],
                "questSets": [q.to_dict() for q in self.quest_sets],
                "modules": [m.to_dict() for m in self.modules],
                "date": self.date,
                "time": self.time,
                "location": self.location,
                "instructor": self.instructor,
                "extraNotes": self.extra_notes,
                "lastUpdated": self.last_updated,
                "nameLabel": self.name_label,
                "emailLabel": self.email_label,
                "whyJoinLabel": self.why_join_label,
                "stats": self.stats,
                "schemaVersion": self.schema_version,
            }
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassConfig":
        return cls(
            title=data["title"],
            description=data.get("description", ""),
            accepting_applications=bool(data.get("acceptingApplications", True)),
            capacity=data.get("capacity"),
            tasks=[TaskConfig.from_dict(t) for t in data.get("tasks") or []],
            resources=[ClassResource.from_dict(r) for r in data.get("resources") or []],
            sessions=[ClassSession.from_dict(s) for s in data.get("sessions") or []],
            quest_sets=[QuestSet.from_dict(q) for q in data.get("questSets") or []],
            modules=[LearningModule.from_dict(m) for m in data.get("modules") or []],
            date=data.get("date"),
            time=data.get("time"),
            location=data.get("location"),
            instructor=data.get("instructor"),
            extra_notes=data.get("extraNotes"),
            last_updated=data.get("lastUpdated"),
            name_label=data.get("nameLabel"),
            email_label=data.get("emailLabel"),
            why_join_label=data.get("whyJoinLabel"),
            stats=data.get("stats"),
            schema_version=int(data.get("schemaVersion") or 1),
        )


def _migrate_v1_to_v2(raw: Dict[str, Any]) -> Dict[str, Any]:
    # v1 documents described a single session with top-level date/time fields
    if not raw.get("sessions") and raw.get("date") and raw.get("time"):
        raw["sessions"] = [
            {
                "id": "legacy-1",
                "title": raw.get("title", "Main Session"),
                "date": raw["date"],
                "time": raw["time"],
                "location": raw.get("location", ""),
                "instructor": raw.get("instructor", ""),
            }
        ]
    for key in ("tasks", "resources", "sessions", "questSets", "modules"):
        if not isinstance(raw.get(key), list):
            raw[key] = []
    raw.setdefault("acceptingApplications", True)
    return raw


CONFIG_MIGRATIONS = {
    1: _migrate_v1_to_v2,
}


def migrate_config(raw: Dict[str, Any]) -> ClassConfig:
    """Upgrades a stored config document to the current schema and parses it.

    Documents without a schemaVersion are treated as version 1.
    """
    document = copy.deepcopy(raw)
    version = int(document.get("schemaVersion") or 1)
    while version < CONFIG_SCHEMA_VERSION:
        logger.info(f"Migrating class config from schema version {version}")
        document = CONFIG_MIGRATIONS[version](document)
        version += 1
    document["schemaVersion"] = version
    return ClassConfig.from_dict(document)


DEFAULT_CLASS_INFO: Dict[str, Any] = {
    "title": "Vibe Coding Class",
    "description": (
        "The Builder Mindset: How AI Actually Builds & What you're Doing Wrong.\n\n"
        "INPUT → LOGIC → DATA → OUTPUT for every app"
    ),
    "acceptingApplications": True,
    "date": "February 12, 2026",
    "time": "8:00 PM EST",
    "location": "Google Meet",
    "instructor": "Fredy",
    "extraNotes": (
        "Join the class via the link below. Make sure you have your environment "
        "set up and ready to code!"
    ),
    "capacity": 50,
    "sessions": [
        {
            "id": "default-1",
            "title": "Main Session: Vibe Coding Workshop",
            "date": "February 12, 2026",
            "time": "8:00 PM EST",
            "location": "https://calendar.app.google/haLz7cFBtTWtFxKD8",
            "instructor": "Fredy",
            "description": "The primary workshop session where we dive deep into AI-assisted development.",
        }
    ],
    "questSets": [
        {
            "id": "vibe-coding",
            "title": "Vibe Coding",
            "description": (
                "Embrace the flow state of AI-assisted development. Learn to guide LLMs "
                "to build complex systems while you maintain the creative vision."
            ),
            "category": "Methodology",
            "level": "Advanced",
            "status": "active",
            "instructor": "Fredy",
            "capacity": 50,
            "sessions": [
                {
                    "id": "q1-s1",
                    "title": "Live Workshop",
                    "date": "February 12, 2026",
                    "time": "8:00 PM EST",
                    "location": "Google Meet",
                    "instructor": "Fredy",
                }
            ],
            "tasks": [
                {
                    "id": "task_follow_web3frik",
                    "description": "Follow web3frik on X",
                    "link": "https://x.com/web3frik",
                    "requiresProof": True,
                    "proofType": "yes_no",
                },
                {
                    "id": "task_repost",
                    "description": "Repost",
                    "link": "https://x.com/web3Xs/status/2019809110649147899",
                    "requiresProof": True,
                    "proofType": "link",
                },
                {
                    "id": "task_join_telegram",
                    "description": "Join Telegram",
                    "link": "https://t.me/web3compassx",
                    "requiresProof": True,
                    "proofLabel": "Your Telegram ID",
                    "proofType": "username",
                },
                {
                    "id": "task_x_username",
                    "description": "Your X username",
                    "requiresProof": True,
                    "proofLabel": "Your X profile link",
                    "proofType": "link",
                },
            ],
        }
    ],
    "tasks": [],
    "resources": [
        {
            "id": "r1",
            "title": "Live Class Session",
            "description": "Join the weekly live stream where we dissect advanced topics.",
            "url": "https://meet.google.com/",
            "type": "stream",
        },
        {
            "id": "r2",
            "title": "Community Discord",
            "description": "Chat with other approved members and get direct feedback in the #exclusive channel.",
            "url": "https://discord.com/",
            "type": "community",
        },
        {
            "id": "r3",
            "title": "Course Syllabus",
            "description": "Download the PDF breakdown of all 8 weeks of content.",
            "url": "#",
            "type": "document",
        },
    ],
}


def default_class_config() -> ClassConfig:
    """A fresh copy of the built-in class config."""
    return migrate_config(DEFAULT_CLASS_INFO)


# --- Proof review ---


@dataclass
class PendingProof:
    challenge_id: str
    title: str
    proof: ProofValue
    xp: int = 0


@dataclass
class StudentProofs:
    """Unreviewed proofs of one student, as shown in the admin review queue."""

    application_id: str
    name: str
    email: str
    proofs: List[PendingProof] = field(default_factory=list)

    @property
    def potential_xp(self) -> int:
        return sum(p.xp for p in self.proofs)
