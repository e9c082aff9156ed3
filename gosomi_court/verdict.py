"""
Verdict Requester
=================

Builds the judge prompt for a case, attaches image evidence, calls the judge,
validates the JSON it returns and writes the verdict onto the case.

The requester never commits: it stages the verdict on the session and the
calling transition commits it together with its own changes. Nothing is
staged unless every step succeeded.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.models import Case, Evidence
from .errors import VerdictGenerationError
from .legal_code import LegalCodeProvider
from .llm import JudgeClient, JudgeImage, safe_log_content
from .repositories import EvidenceStore, JuryLedger
from .schemas import (
    EvidenceStage,
    JuryTally,
    PartyRole,
    SkippedImage,
    VerdictOutcome,
    VerdictPayload,
)

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_MIMES = ("image/png", "image/jpeg", "image/webp")
DEFAULT_IMAGE_MIME = "image/png"

VERDICT_SCHEMA_TEXT = """{
  "result": "GUILTY" | "NOT_GUILTY" | "BOTH_AT_FAULT" | "SETTLEMENT",
  "intensity": "low" | "mid" | "high",
  "lawRefs": [{"id": "...", "category": "..."}],
  "oneLine": "one-line verdict",
  "reasoning": "reasons for the verdict",
  "penalties": {
    "serious": ["1 to 3 serious penalties"],
    "funny": ["1 to 3 funny penalties"]
  },
  "faultRatio": {"plaintiff": integer 0-100, "defendant": integer 0-100}
}"""


# =============================================================================
# Prompt
# =============================================================================

@dataclass
class AppealContext:
    appellant_id: Optional[int]
    reason: Optional[str]
    response: Optional[str]
    plaintiff_texts: List[str] = field(default_factory=list)
    defendant_texts: List[str] = field(default_factory=list)


@dataclass
class CaseDossier:
    """Everything the prompt is built from"""
    title: str
    content: str
    plaintiff_texts: List[str] = field(default_factory=list)
    defense_text: Optional[str] = None
    defendant_texts: List[str] = field(default_factory=list)
    appeal: Optional[AppealContext] = None
    jury: Optional[JuryTally] = None


def _numbered(items: Sequence[str]) -> str:
    if not items:
        return "- none"
    return "\n".join(f"({i}) {text}" for i, text in enumerate(items, start=1))


def build_prompt(rules: Dict[str, Any], dossier: CaseDossier) -> str:
    """
    Build the verdict prompt. Pure function of its inputs.

    The appeal block is included only when `dossier.appeal` is set; the jury
    block only when there is no appeal and at least one vote was cast.
    """
    sections = [
        "You are the strict and solemn AI judge of Gosomi Court, with a sense of humour "
        "that matches your generation's values.",
        "Decide only on the basis of the legal code (JSON), the plaintiff's claim and "
        "evidence, and the defendant's defense and evidence below. Keep speculation to a "
        "minimum; if the evidence is insufficient, say so in the reasoning.",
        "",
        "[Output rules]",
        "- Output JSON only.",
        "- Follow this schema exactly:",
        VERDICT_SCHEMA_TEXT,
        "- GUILTY: the plaintiff wins; penalties apply to the defendant.",
        "- NOT_GUILTY: the defendant wins; penalties apply to the plaintiff.",
        "- BOTH_AT_FAULT: both parties are at fault. In this case both penalty lists "
        "MUST be empty arrays; nobody is penalised.",
        "- faultRatio.plaintiff + faultRatio.defendant must equal 100 "
        "(close to 50:50 when both are at fault).",
        "- Pick penalties only from the legal code entries matching the intensity.",
        "- Cite the specific article (e.g. 'Article 2(1) of the Messenger Manners Act') "
        "in the reasoning.",
        "",
        "[Legal code (JSON)]",
        json.dumps(rules, ensure_ascii=False, indent=2),
        "",
        "[Plaintiff]",
        f"- Title: {dossier.title}",
        f"- Content: {dossier.content}",
        "",
        "[Plaintiff text evidence (first instance)]",
        _numbered(dossier.plaintiff_texts),
        "",
        "[Defendant defense (first instance)]",
        dossier.defense_text or "- no defense submitted",
        "",
        "[Defendant text evidence (first instance)]",
        _numbered(dossier.defendant_texts),
    ]

    appeal = dossier.appeal
    if appeal is not None:
        sections += [
            "",
            "[Appeal (second instance)]",
            "The first-instance verdict has been appealed. Consider the additional "
            "information below and give the FINAL verdict.",
            f"- Appellant id: {appeal.appellant_id}",
            f"- Reason: {appeal.reason or ''}",
            "",
            "[Appeal text evidence (plaintiff)]",
            _numbered(appeal.plaintiff_texts),
            "",
            "[Appeal response (other party)]",
            f"- Response: {appeal.response or '- no response'}",
            "",
            "[Appeal text evidence (defendant)]",
            _numbered(appeal.defendant_texts),
            "",
            "Weigh carefully whether there is enough reason to overturn the earlier verdict.",
        ]
    elif dossier.jury is not None and dossier.jury.total > 0:
        jury = dossier.jury
        sections += [
            "",
            "[Jury vote (advisory)]",
            f"{jury.total} jurors voted:",
            f"- Plaintiff at fault: {jury.plaintiff}",
            f"- Defendant at fault: {jury.defendant}",
            "Take public opinion into account but do not follow it blindly; your legal "
            "judgement comes first.",
        ]

    sections += ["", "Now deliver the verdict."]
    return "\n".join(sections).strip()


# =============================================================================
# Response parsing
# =============================================================================

CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove ``` and ```json markers wherever they appear, keeping what they wrap."""
    return CODE_FENCE_RE.sub("", str(text)).strip()


def extract_json_block(text: str) -> str:
    """
    Return the first balanced {...} span of `text`, ignoring braces inside
    JSON strings. Raises ValueError when there is none.
    """
    cleaned = strip_code_fences(text)
    start = cleaned.find("{")
    if start == -1:
        raise ValueError("no JSON object in judge output")

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(cleaned)):
        char = cleaned[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return cleaned[start:i + 1]

    raise ValueError("unbalanced JSON object in judge output")


def parse_verdict(raw_text: str) -> VerdictPayload:
    """Extract and validate the verdict. Wrong types are rejected, not coerced."""
    try:
        data = json.loads(extract_json_block(raw_text))
    except ValueError as e:
        logger.error(f"Judge returned non-JSON: {e}; {safe_log_content(raw_text)}")
        raise VerdictGenerationError(f"judge returned non-JSON: {e}") from e

    try:
        return VerdictPayload.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'verdict'}: {err['msg']}"
            for err in e.errors()
        )
        logger.error(f"Judge verdict failed validation: {problems}")
        raise VerdictGenerationError(f"judge verdict failed validation: {problems}") from e


# =============================================================================
# Images
# =============================================================================

def is_relative_upload_path(file_path: str) -> bool:
    """True for a relative path with no `..` segments."""
    if not file_path or os.path.isabs(file_path) or file_path.startswith(("/", "\\")):
        return False
    parts = re.split(r"[\\/]+", file_path)
    return ".." not in parts


def resolve_upload_path(upload_root: str, file_path: str) -> Optional[str]:
    """Real path of `file_path` under `upload_root`, or None when it escapes the root."""
    root = os.path.realpath(upload_root)
    path = os.path.realpath(os.path.join(root, file_path))
    if os.path.commonpath([root, path]) != root:
        return None
    return path


def load_image(evidence: Evidence, upload_root: str, min_bytes: int) -> Tuple[Optional[JudgeImage], Optional[str]]:
    """Returns (image, None) or (None, skip_reason)."""
    path = resolve_upload_path(upload_root, evidence.file_path)
    if path is None:
        logger.warning(f"Evidence {evidence.id} points outside the upload root; skipped")
        return None, "outside_upload_root"
    if not os.path.isfile(path):
        return None, "missing_file"

    size = os.path.getsize(path)
    if size < min_bytes:
        return None, f"too_small({size})"

    mime = evidence.mime_type or DEFAULT_IMAGE_MIME
    if mime not in ALLOWED_IMAGE_MIMES:
        return None, f"bad_mime({mime})"

    with open(path, "rb") as f:
        return JudgeImage(mime_type=mime, data=f.read()), None


def gather_images(
    plaintiff: Sequence[Evidence],
    defendant: Sequence[Evidence],
    *,
    upload_root: str,
    max_per_side: int = 3,
    min_bytes: int = 5 * 1024,
) -> Tuple[List[JudgeImage], List[SkippedImage]]:
    """First `max_per_side` images of each side; failures are skipped, not fatal."""
    images: List[JudgeImage] = []
    skipped: List[SkippedImage] = []

    for side in (plaintiff, defendant):
        for evidence in list(side)[:max_per_side]:
            image, reason = load_image(evidence, upload_root, min_bytes)
            if image is not None:
                images.append(image)
            else:
                skipped.append(SkippedImage(evidenceId=evidence.id, file=evidence.file_path, reason=reason))

    if skipped:
        logger.info(f"Skipped {len(skipped)} evidence images: {[s.reason for s in skipped]}")
    return images, skipped


# =============================================================================
# Requester
# =============================================================================

class VerdictRequester:
    """Produces and stages a validated verdict for one case."""

    def __init__(
        self,
        session: Session,
        judge: JudgeClient,
        legal_code: Optional[LegalCodeProvider] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.judge = judge
        self.legal_code = legal_code or LegalCodeProvider()
        self.settings = settings or get_settings()
        self.evidence = EvidenceStore(session)
        self.jury = JuryLedger(session)

    def dossier_for(self, case: Case, is_appeal: bool) -> CaseDossier:
        defense = self.evidence.get_defense(case.id)
        dossier = CaseDossier(
            title=case.title,
            content=case.content,
            plaintiff_texts=self.evidence.texts(case.id, PartyRole.PLAINTIFF, EvidenceStage.INITIAL),
            defense_text=defense.content if defense else None,
            defendant_texts=self.evidence.texts(case.id, PartyRole.DEFENDANT, EvidenceStage.INITIAL),
        )

        if is_appeal:
            dossier.appeal = AppealContext(
                appellant_id=case.appellant_id,
                reason=case.appeal_reason,
                response=case.appeal_response,
                plaintiff_texts=self.evidence.texts(case.id, PartyRole.PLAINTIFF, EvidenceStage.APPEAL),
                defendant_texts=self.evidence.texts(case.id, PartyRole.DEFENDANT, EvidenceStage.APPEAL),
            )
        else:
            dossier.jury = self.jury.tally(case.id)
        return dossier

    async def generate(self, case: Case, is_appeal: bool = False) -> VerdictOutcome:
        """
        Generate a verdict and stage it on `case`.

        Raises:
            VerdictGenerationError: judge failure, non-JSON output or schema violation
        """
        dossier = self.dossier_for(case, is_appeal)
        texts = [dossier.title, dossier.content, *dossier.plaintiff_texts, dossier.defense_text or ""]
        prompt = build_prompt(self.legal_code.rules_for(case.law_type, texts), dossier)

        images, skipped = gather_images(
            self.evidence.images(case.id, PartyRole.PLAINTIFF),
            self.evidence.images(case.id, PartyRole.DEFENDANT),
            upload_root=self.settings.upload_root,
            max_per_side=self.settings.max_images_per_side,
            min_bytes=self.settings.min_image_bytes,
        )
        used_images = bool(images)
        images_ignored = False

        logger.info(f"Requesting {'appeal ' if is_appeal else ''}verdict for case {case.id} "
                    f"({len(images)} images, {len(skipped)} skipped)")

        result = await self.judge.judge(prompt, images)
        if not result.success and used_images and result.image_rejected:
            logger.warning(f"Judge rejected images for case {case.id}; retrying text-only")
            images_ignored = True
            result = await self.judge.judge(prompt, [])

        if not result.success:
            logger.error(f"Judge call failed for case {case.id}: {result.error}")
            raise VerdictGenerationError(f"judge call failed: {result.error}")

        verdict = parse_verdict(result.content)
        case.apply_verdict(verdict)
        self.session.flush()

        logger.info(f"Verdict for case {case.id}: {verdict.result.value} "
                    f"({verdict.faultRatio.plaintiff}:{verdict.faultRatio.defendant})")

        return VerdictOutcome(
            ok=True,
            cached=False,
            caseId=case.id,
            verdictText=case.verdict_text,
            faultRatio=verdict.faultRatio,
            penaltyChoice=None,
            penaltySelected=None,
            verdict=verdict,
            usedImages=used_images,
            imagesIgnored=images_ignored,
            skippedImages=skipped,
        )
