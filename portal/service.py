"""
Portal Service Layer

Business logic on top of a record store backend. This module implements:

1. Application submission with server-side validation and typed proofs
2. The status state machine (pending -> approved | rejected) and its side effects:
   approval issues the applicant's invite code and emails it
3. Batch approval that reports partial failure instead of aborting
4. Proof review for curriculum challenges (approve awards XP, reject deletes the proof
   so the student can resubmit)
5. Code redemption, reminders and dashboard statistics

In remote mode the collaborator sends its own emails, so notifications here only go
out when the backend is local.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from portal import mailer
from portal.backends import LocalBackend, RecordStore, RemoteBackend
from portal.blob_storage import BlobStorage, decode_data_uri
from portal.errors import NotFound, ValidationError
from portal.models import (
    Application,
    ApplicationStatus,
    BatchResult,
    ClassConfig,
    ImageProof,
    InviteCode,
    PendingProof,
    ProofKind,
    ProofValue,
    RedemptionResult,
    StudentProofs,
    make_proof,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

# Basic email validation, intentionally permissive
_EMAIL_RE = re.compile(r"^[^@\s]{1,64}@[^@\s]+\.[^@\s]+$")
_MAX_NAME_LEN = 200

PROOF_APPROVED = "approved"


def _is_http_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def build_proof(proof_type: str, kind: ProofKind, raw: Any, field: str) -> Optional[ProofValue]:
    """
    Validates a raw proof against its declared type and wraps it in a ProofValue.

    Returns None for an empty value.

    Raises:
        ValidationError: the value does not fit the declared proof type
    """
    value = "" if raw is None else str(raw).strip()
    if not value:
        return None

    if proof_type == "yes_no":
        value = value.lower()
        if value not in ("yes", "no"):
            raise ValidationError("Answer must be 'yes' or 'no'", field=field)
    elif kind is ProofKind.LINK:
        if not _is_http_url(value):
            raise ValidationError("Proof must be an http(s) link", field=field)
    elif kind is ProofKind.IMAGE:
        if value.startswith("data:"):
            decode_data_uri(value)
        elif not _is_http_url(value):
            raise ValidationError("Image proof must be an uploaded image or a link", field=field)
    return make_proof(kind, value)


class PortalService:
    """Admin and student operations over one record store."""

    def __init__(self, backend: RecordStore, blob_storage: Optional[BlobStorage] = None):
        self.backend = backend
        # Set on the collaborator side only: inline images are replaced by hosted URLs
        self.blob_storage = blob_storage
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def sends_notifications(self) -> bool:
        return not self.backend.delegates_side_effects

    # --- Config ---

    def get_config(self) -> ClassConfig:
        return self.backend.get_config()

    def stored_config(self) -> Optional[ClassConfig]:
        if isinstance(self.backend, LocalBackend):
            return self.backend.stored_config()
        return self.backend.get_config()

    def save_config(self, config: ClassConfig, stamp: bool = True) -> None:
        """Full overwrite. Concurrent admins: the last save wins."""
        if stamp:
            config.last_updated = utc_now_iso()
        config.stats = None
        self.backend.set_config(config)

    # --- Applications ---

    def list_applications(
        self,
        status: Optional[Any] = None,
        search: Optional[str] = None,
    ) -> List[Application]:
        applications = self.backend.list_applications()
        if status:
            wanted = ApplicationStatus.parse(status)
            applications = [a for a in applications if a.status is wanted]
        if search:
            term = search.lower()
            applications = [
                a
                for a in applications
                if term in a.email.lower() or term in a.full_name.lower()
            ]
        return applications

    def get_application(self, application_id: str) -> Application:
        return self.backend.get_application(application_id)

    def _host_image(self, proof: ProofValue) -> ProofValue:
        if self.blob_storage and isinstance(proof, ImageProof) and proof.is_inline:
            return ImageProof(self.blob_storage.upload_data_uri(proof.ref))
        return proof

    def submit_application(self, fields: Dict[str, Any]) -> Application:
        """
        Validates and stores a new application with status pending.

        Proofs are tagged from the declared proofType of the matching task (global
        tasks plus the tasks of the chosen quest set); proofs for unknown ids are text.

        Admin-owned fields (status, adminNote, proofStatuses) are never taken from the
        payload.

        Raises:
            ValidationError: applications are closed or a field is malformed
        """
        config = self.backend.get_config()
        if not config.accepting_applications:
            raise ValidationError("Applications are currently closed")

        full_name = str(fields.get("fullName") or "").strip()
        if not full_name:
            raise ValidationError("Full name is required", field="fullName")
        if len(full_name) > _MAX_NAME_LEN:
            raise ValidationError("Full name is too long", field="fullName")

        email = str(fields.get("email") or "").strip().lower()
        if not _EMAIL_RE.match(email):
            raise ValidationError("A valid email address is required", field="email")

        wave = fields.get("wave")
        if wave not in (None, ""):
            try:
                wave = int(wave)
            except (TypeError, ValueError):
                raise ValidationError("wave must be an integer", field="wave")
        else:
            wave = None

        raw_proofs = fields.get("taskProofs") or {}
        if not isinstance(raw_proofs, dict):
            raise ValidationError("taskProofs must be an object", field="taskProofs")

        quest_set_id = fields.get("questSetId")
        tasks = {task.id: task for task in config.tasks_for(quest_set_id)}
        proofs: Dict[str, ProofValue] = {}
        for task_id, raw in raw_proofs.items():
            task = tasks.get(task_id)
            proof_type = task.proof_type if task else "text"
            kind = task.proof_kind if task else ProofKind.TEXT
            proof = build_proof(proof_type, kind, raw, field=f"taskProofs.{task_id}")
            if proof is not None:
                proofs[task_id] = self._host_image(proof)

        for task in tasks.values():
            if task.requires_proof and task.id not in proofs:
                raise ValidationError(
                    f"Proof required for task: {task.description}", field=f"taskProofs.{task.id}"
                )

        submitted = {
            "email": email,
            "fullName": full_name,
            "whyJoin": str(fields.get("whyJoin") or "").strip(),
            "taskProofs": {k: v.raw for k, v in proofs.items()},
            "proofKinds": {k: v.kind.value for k, v in proofs.items()},
            "proofStatuses": {},
            "wave": wave,
            "twitterHandle": fields.get("twitterHandle"),
            "referrerId": fields.get("referrerId"),
            "questSetId": quest_set_id,
        }
        application = self.backend.create_application(
            {k: v for k, v in submitted.items() if v is not None}
        )
        self.logger.info(f"Application {application.id} submitted by {application.email}")
        return application

    def _host_inline_proofs(self, application_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        raw_proofs = updates.get("taskProofs")
        if not self.blob_storage or not isinstance(raw_proofs, dict):
            return updates
        kinds = updates.get("proofKinds")
        if not isinstance(kinds, dict):
            kinds = None

        proofs: Dict[str, Any] = {}
        hosted_ids = []
        for proof_id, raw in raw_proofs.items():
            # Without a recorded kind, the data-URI prefix marks an image
            declared = (kinds or {}).get(proof_id, ProofKind.IMAGE.value)
            if declared == ProofKind.IMAGE.value and isinstance(raw, str):
                proof = ImageProof(raw)
                if proof.is_inline:
                    proofs[proof_id] = self._host_image(proof).raw
                    hosted_ids.append(proof_id)
                    continue
            proofs[proof_id] = raw
        if not hosted_ids:
            return updates

        if kinds is None:
            current = self.backend.get_application(application_id)
            kinds = {k: v.kind.value for k, v in current.task_proofs.items()}
        kinds = dict(kinds)
        for proof_id in hosted_ids:
            kinds[proof_id] = ProofKind.IMAGE.value
        self.logger.info(f"Hosted {len(hosted_ids)} inline image proof(s) for {application_id}")
        return {**updates, "taskProofs": proofs, "proofKinds": kinds}

    def update_application(self, application_id: str, updates: Dict[str, Any]) -> Application:
        """Merges wire-shaped fields into the stored record and returns it.

        Inline image proofs are uploaded first when this service hosts blobs.

        Raises:
            NotFound: unknown application id
            ValidationError: malformed fields or an unreadable inline image
        """
        updates = self._host_inline_proofs(application_id, updates)
        return self.backend.update_application(application_id, updates)

    def set_status(self, application_id: str, status: Any) -> None:
        """Sets the status without side effects and without checking the transition."""
        self.backend.set_application_status(application_id, status)

    # --- State machine ---

    def approve(self, application_id: str) -> InviteCode:
        """
        pending -> approved. Issues (or re-sends) the applicant's code.

        Safe to repeat: an approved application keeps its single code.
        """
        application = self.backend.get_application(application_id)
        self.backend.set_application_status(application.id, ApplicationStatus.APPROVED)
        invite, _created = self.issue_code(application.id, application.email)
        self.logger.info(f"Application {application.id} approved with code {invite.code}")
        return invite

    def reject(self, application_id: str) -> None:
        """pending -> rejected. No code is issued; the record stays queryable."""
        application = self.backend.get_application(application_id)
        self.backend.set_application_status(application.id, ApplicationStatus.REJECTED)
        self.logger.info(f"Application {application.id} rejected")

    def batch_approve(self, application_ids: List[str]) -> BatchResult:
        """
        Approves each application independently.

        A failure is recorded against its id and processing continues; applications
        approved before the failure stay approved.
        """
        result = BatchResult()
        for application_id in application_ids:
            try:
                self.approve(application_id)
                result.succeeded.append(application_id)
            except Exception as e:
                message = getattr(e, "message", None) or str(e)
                self.logger.error(
                    f"Batch approval failed for application {application_id}: {message}",
                    exc_info=True,
                )
                result.failed[application_id] = message
        self.logger.info(
            f"Batch approval finished: {result.count} approved, {len(result.failed)} failed"
        )
        return result

    # --- Codes ---

    def issue_code(self, application_id: str, email: str) -> Tuple[InviteCode, bool]:
        """Issues the application's code, or re-sends the existing one.

        Returns:
            (code, created)
        """
        invite, created = self.backend.issue_code(application_id, email)
        if self.sends_notifications:
            if not mailer.send_access_code(email, invite.code, resent=not created):
                self.logger.warning(
                    f"Access code email to {email} failed; code {invite.code} was still issued"
                )
        return invite, created

    def list_codes(self) -> List[InviteCode]:
        return self.backend.list_codes()

    def redeem_code(self, code: str) -> RedemptionResult:
        return self.backend.redeem_code(code)

    # --- Proofs and XP ---

    def _proof_target(self, application: Application, challenge_id: str, config: ClassConfig):
        challenge = config.all_challenges().get(challenge_id)
        if challenge:
            return challenge.title, challenge.proof_type, challenge.proof_kind, challenge.xp
        for task in config.tasks_for(application.quest_set_id):
            if task.id == challenge_id:
                return task.description, task.proof_type, task.proof_kind, 0
        return None

    def submit_proof(self, application_id: str, challenge_id: str, raw: Any) -> ProofValue:
        """
        Stores a student's proof for a challenge (or task), replacing an unreviewed one.

        Raises:
            NotFound: unknown application or challenge
            ValidationError: empty or malformed proof, or the proof is already approved
        """
        application = self.backend.get_application(application_id)
        target = self._proof_target(application, challenge_id, self.backend.get_config())
        if target is None:
            raise NotFound("Challenge", challenge_id)
        _title, proof_type, kind, _xp = target

        if application.proof_statuses.get(challenge_id) == PROOF_APPROVED:
            raise ValidationError("This proof has already been approved", field=challenge_id)

        proof = build_proof(proof_type, kind, raw, field=challenge_id)
        if proof is None:
            raise ValidationError("Proof cannot be empty", field=challenge_id)
        proof = self._host_image(proof)

        proofs = dict(application.task_proofs)
        proofs[challenge_id] = proof
        updated = self.backend.update_application(
            application.id,
            {
                "taskProofs": {k: v.raw for k, v in proofs.items()},
                "proofKinds": {k: v.kind.value for k, v in proofs.items()},
            },
        )
        # A remote collaborator may have replaced an inline image with its hosted URL
        return updated.task_proofs.get(challenge_id, proof)

    def approve_proof(self, application_id: str, challenge_id: str) -> int:
        """Marks a proof approved and returns the XP it awards."""
        application = self.backend.get_application(application_id)
        if challenge_id not in application.task_proofs:
            raise NotFound("Proof", challenge_id)

        statuses = dict(application.proof_statuses)
        statuses[challenge_id] = PROOF_APPROVED
        self.backend.update_application(application.id, {"proofStatuses": statuses})

        challenge = self.backend.get_config().all_challenges().get(challenge_id)
        xp = challenge.xp if challenge else 0
        self.logger.info(f"Proof {challenge_id} of application {application.id} approved (+{xp} XP)")
        return xp

    def reject_proof(self, application_id: str, challenge_id: str) -> None:
        """Deletes the proof and its status so the student sees an empty field to redo."""
        application = self.backend.get_application(application_id)
        if challenge_id not in application.task_proofs:
            raise NotFound("Proof", challenge_id)

        proofs = {k: v for k, v in application.task_proofs.items() if k != challenge_id}
        statuses = {k: v for k, v in application.proof_statuses.items() if k != challenge_id}
        self.backend.update_application(
            application.id,
            {
                "taskProofs": {k: v.raw for k, v in proofs.items()},
                "proofKinds": {k: v.kind.value for k, v in proofs.items()},
                "proofStatuses": statuses,
            },
        )
        self.logger.info(f"Proof {challenge_id} of application {application.id} rejected")

    def xp_for(self, application: Application, config: Optional[ClassConfig] = None) -> int:
        """Total XP of the application's approved challenge proofs."""
        challenges = (config or self.backend.get_config()).all_challenges()
        return sum(
            challenges[cid].xp
            for cid, status in application.proof_statuses.items()
            if status == PROOF_APPROVED and cid in challenges
        )

    def pending_proofs(self) -> List[StudentProofs]:
        """Unreviewed proofs grouped per student."""
        config = self.backend.get_config()
        groups: List[StudentProofs] = []
        for application in self.backend.list_applications():
            group = StudentProofs(
                application_id=application.id,
                name=application.full_name or application.email,
                email=application.email,
            )
            for proof_id, proof in application.task_proofs.items():
                if application.proof_statuses.get(proof_id) == PROOF_APPROVED:
                    continue
                target = self._proof_target(application, proof_id, config)
                title, xp = (target[0], target[3]) if target else ("Unknown Challenge", 0)
                group.proofs.append(PendingProof(proof_id, title, proof, xp))
            if group.proofs:
                groups.append(group)
        return groups

    # --- Dashboard and reminders ---

    def stats(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ApplicationStatus}
        applications = self.backend.list_applications()
        for application in applications:
            counts[application.status.value] += 1
        counts["total"] = len(applications)
        return counts

    def trigger_reminders(self) -> int:
        """Emails every student who has redeemed a code. Returns the number sent."""
        if isinstance(self.backend, RemoteBackend):
            return self.backend.trigger_reminders()

        title = self.backend.get_config().title
        recipients = sorted({code.email for code in self.backend.list_codes() if code.used})
        sent = sum(1 for email in recipients if mailer.send_reminder(email, title))
        self.logger.info(f"Sent {sent} reminder(s) to {len(recipients)} student(s)")
        return sent
