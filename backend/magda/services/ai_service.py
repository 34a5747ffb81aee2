"""
AI assistant - record enrichment and read-only health insights via an
OpenAI-compatible chat completions API.

Without an API key every call uses a local rule-based fallback, so the app
keeps working offline.  Enrichment failures surface as ``EnrichmentFailure``;
the record repository decides how to degrade.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

import httpx

from magda.config import Settings, get_settings
from magda.exceptions import EnrichmentFailure
from magda.models.base import utcnow
from magda.models.medical_record import MedicalRecord, RecordMetadata, RecordType

logger = logging.getLogger(__name__)

# Keyword vocabulary for the offline fallback
KEYWORD_TABLE = {
    "blood pressure": "blood pressure",
    "cholesterol": "cholesterol",
    "ldl": "LDL",
    "hdl": "HDL",
    "triglyceride": "triglycerides",
    "glucose": "glucose",
    "a1c": "HbA1c",
    "vaccine": "immunization",
    "influenza": "influenza",
    "flu": "influenza",
    "mri": "MRI",
    "x-ray": "x-ray",
    "ct scan": "CT scan",
    "fracture": "fracture",
    "antibiotic": "antibiotics",
    "infection": "infection",
    "allergy": "allergy",
    "asthma": "asthma",
    "diabetes": "diabetes",
    "heart": "cardiovascular",
    "knee": "knee",
}

MEDICATION_TABLE = [
    "amoxicillin", "lisinopril", "metformin", "atorvastatin", "simvastatin",
    "warfarin", "aspirin", "ibuprofen", "naproxen", "insulin", "levothyroxine",
    "sertraline", "albuterol", "prednisone", "omeprazole", "clopidogrel",
]

# Well-known pairs used when the assistant is unavailable
KNOWN_INTERACTIONS = {
    frozenset({"warfarin", "aspirin"}): ("high", "Increased bleeding risk"),
    frozenset({"warfarin", "ibuprofen"}): ("high", "Increased bleeding risk"),
    frozenset({"lisinopril", "ibuprofen"}): ("moderate", "NSAIDs can reduce the blood-pressure effect and strain the kidneys"),
    frozenset({"clopidogrel", "omeprazole"}): ("moderate", "Omeprazole can reduce the antiplatelet effect of clopidogrel"),
    frozenset({"simvastatin", "amoxicillin"}): ("low", "No clinically significant interaction expected"),
}

ENRICH_SYSTEM_PROMPT = """You analyze a personal medical record for its owner.
Respond ONLY with valid JSON:
{"keywords": [str], "summary": str, "medications": [str], "followUp": str or null}"""

ASSISTANT_SYSTEM_PROMPT = """You are a careful health assistant. Answer the user's question using only
the medical records provided. Say so when the records do not contain the answer and
recommend consulting a clinician for medical decisions."""


def _extract_json(text: str) -> str:
    """Strip markdown code fences from LLM responses to get raw JSON."""
    m = re.search(r"```(?:json)?\s*\n?(.*?)```", text, re.DOTALL)
    if m:
        return m.group(1).strip()
    for start_ch, end_ch in [("{", "}"), ("[", "]")]:
        start = text.find(start_ch)
        end = text.rfind(end_ch)
        if start != -1 and end != -1 and end > start:
            return text[start : end + 1]
    return text.strip()


def _record_text(record: MedicalRecord) -> str:
    return f"{record.title}\n{record.description}".lower()


def _find_medications(records: list[MedicalRecord]) -> list[str]:
    found: list[str] = []
    for record in records:
        candidates = list(record.metadata.medications) if record.metadata else []
        text = _record_text(record)
        candidates += [m for m in MEDICATION_TABLE if m in text]
        for med in candidates:
            med = med.lower()
            if med not in found:
                found.append(med)
    return found


def _records_context(records: list[MedicalRecord], limit: int = 20) -> str:
    lines = []
    for r in records[:limit]:
        lines.append(f"- {r.date.isoformat()} [{r.type.value}] {r.title} ({r.provider}): {r.description}")
    return "\n".join(lines) or "(no records)"


def fallback_metadata(record: MedicalRecord) -> RecordMetadata:
    """Keyword-based analysis used when no API key is configured."""
    text = _record_text(record)
    keywords = []
    for needle, keyword in KEYWORD_TABLE.items():
        if needle in text and keyword not in keywords:
            keywords.append(keyword)
    return RecordMetadata(
        ai_analyzed=False,
        keywords=keywords,
        summary=record.title,
        medications=_find_medications([record]),
        processing_date=utcnow(),
        note="AI service not configured; keywords extracted locally",
    )


class AIService:
    def __init__(
        self,
        credentials=None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._credentials = credentials
        self._settings = settings or get_settings()
        self._transport = transport

    async def _api_key(self) -> Optional[str]:
        if self._credentials is not None:
            key = await self._credentials.get_api_key()
            if key:
                return key
        return self._settings.OPENAI_API_KEY

    async def _call_llm(self, system_prompt: str, user_message: str, max_tokens: int = 1024) -> Optional[str]:
        """Call the chat completions API; None when no key is configured."""
        api_key = await self._api_key()
        if not api_key:
            logger.warning("OpenAI API key not found, using fallback")
            return None

        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            response = await client.post(
                self._settings.OPENAI_API_URL,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self._settings.OPENAI_MODEL,
                    "max_tokens": max_tokens,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_message},
                    ],
                },
            )
            response.raise_for_status()
            data = response.json()
            if data.get("choices"):
                return (data["choices"][0].get("message", {}).get("content") or "").strip()
            return ""

    async def process_uploaded_record(self, record: MedicalRecord) -> MedicalRecord:
        """Return *record* with ``metadata`` filled in by the assistant."""
        message = (
            f"Title: {record.title}\nType: {record.type.value}\nDate: {record.date.isoformat()}\n"
            f"Provider: {record.provider}\nDescription: {record.description}"
        )
        try:
            raw = await self._call_llm(ENRICH_SYSTEM_PROMPT, message)
        except httpx.HTTPError as exc:
            logger.error("Record analysis failed: %s", exc)
            raise EnrichmentFailure(f"AI analysis failed: {exc}") from exc

        if raw is None:
            record.metadata = fallback_metadata(record)
            return record

        try:
            parsed = json.loads(_extract_json(raw))
            if not isinstance(parsed, dict):
                raise ValueError("expected a JSON object")
        except ValueError as exc:
            raise EnrichmentFailure(f"AI analysis returned invalid JSON: {exc}") from exc

        record.metadata = RecordMetadata(
            ai_analyzed=True,
            keywords=[str(k) for k in parsed.get("keywords") or []],
            summary=parsed.get("summary") or record.title,
            medications=[str(m) for m in parsed.get("medications") or []],
            follow_up=parsed.get("followUp") or parsed.get("follow_up"),
            processing_date=utcnow(),
        )
        return record

    async def analyze_medication_interactions(self, records: list[MedicalRecord]) -> dict:
        medications = _find_medications(records)
        result = {"medications": medications, "interactions": [], "source": "rules"}
        if len(medications) < 2:
            return result

        system = """You check medication lists for interactions. Respond ONLY with valid JSON:
[{"medications": [str, str], "severity": "low|moderate|high", "description": str}]"""
        try:
            raw = await self._call_llm(system, "Medications: " + ", ".join(medications))
            if raw is not None:
                interactions = json.loads(_extract_json(raw))
                if isinstance(interactions, list):
                    return {"medications": medications, "interactions": interactions, "source": "ai"}
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Medication interaction analysis failed: {e}")

        for i, first in enumerate(medications):
            for second in medications[i + 1:]:
                hit = KNOWN_INTERACTIONS.get(frozenset({first, second}))
                if hit:
                    severity, description = hit
                    result["interactions"].append(
                        {"medications": [first, second], "severity": severity, "description": description}
                    )
        return result

    async def get_health_recommendations(self, records: list[MedicalRecord]) -> list[dict]:
        system = """You suggest preventive-care follow-ups from a patient's records. Respond ONLY with valid JSON:
[{"title": str, "description": str, "priority": "low|medium|high"}]"""
        try:
            raw = await self._call_llm(system, _records_context(records))
            if raw is not None:
                parsed = json.loads(_extract_json(raw))
                if isinstance(parsed, list):
                    return parsed
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Recommendation generation failed: {e}")
        return self._rule_based_recommendations(records)

    @staticmethod
    def _rule_based_recommendations(records: list[MedicalRecord]) -> list[dict]:
        today = utcnow().date()
        latest: dict[RecordType, int] = {}
        for r in records:
            age = (today - r.date).days
            if r.type not in latest or age < latest[r.type]:
                latest[r.type] = age

        recommendations = []
        if latest.get(RecordType.IMMUNIZATION, 10**6) > 365:
            recommendations.append({
                "title": "Seasonal flu vaccine",
                "description": "No immunization recorded in the past year.",
                "priority": "medium",
            })
        if latest.get(RecordType.VISIT, 10**6) > 365:
            recommendations.append({
                "title": "Annual physical",
                "description": "No clinic visit recorded in the past year.",
                "priority": "medium",
            })
        if latest.get(RecordType.LAB, 10**6) > 730:
            recommendations.append({
                "title": "Routine blood work",
                "description": "No lab results recorded in the past two years.",
                "priority": "low",
            })
        return recommendations

    async def ask_health_assistant(self, question: str, records: list[MedicalRecord], account_id: str) -> str:
        message = f"Records for account {account_id}:\n{_records_context(records)}\n\nQuestion: {question}"
        try:
            answer = await self._call_llm(ASSISTANT_SYSTEM_PROMPT, message)
            if answer:
                return answer
        except httpx.HTTPError as e:
            logger.error(f"Health assistant request failed: {e}")
            return "Sorry, I'm unable to process your question right now."

        words = {w for w in re.findall(r"[a-z0-9-]+", question.lower()) if len(w) > 3}
        matches = [r for r in records if words & set(re.findall(r"[a-z0-9-]+", _record_text(r)))]
        if not matches:
            return f'I could not find anything in your records about: "{question}"'
        listing = "; ".join(f"{r.title} ({r.date.isoformat()})" for r in matches[:5])
        return f"These records may be relevant: {listing}"
