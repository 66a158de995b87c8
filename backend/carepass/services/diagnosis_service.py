"""
AI diagnosis — forwards patient-reported symptoms to the Gemini
generateContent endpoint with a fixed JSON response schema and stores the
answer as a diagnosis session.

The model output is only checked for being parseable JSON; whatever parses
is persisted and returned as-is.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carepass.api.middleware.audit import log_audit
from carepass.config import get_settings
from carepass.exceptions import BadRequest, Forbidden, UpstreamError, UpstreamAuthError
from carepass.models.diagnosis_session import DiagnosisSession
from carepass.models.user import User, UserRole

logger = logging.getLogger(__name__)

URGENCY_LEVELS = ["low", "medium", "high", "emergency"]

DIAGNOSIS_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "conditions": {
            "type": "ARRAY",
            "description": "A list of possible medical conditions.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING", "description": "The technical name of the condition."},
                    "commonName": {"type": "STRING", "description": "The common name for the condition."},
                    "probability": {"type": "NUMBER", "description": "Estimated probability (0-100)."},
                    "description": {"type": "STRING", "description": "Brief description and IMPORTANT DISCLAIMER."},
                    "treatmentAdvice": {
                        "type": "ARRAY",
                        "items": {"type": "STRING"},
                        "description": "List of initial self-care steps or medical advice.",
                    },
                    "whenToSeeDoctor": {
                        "type": "STRING",
                        "description": "Specific guidance on when to seek medical attention.",
                    },
                    "isSeriousCondition": {
                        "type": "BOOLEAN",
                        "description": "True if the condition is considered serious or high-risk.",
                    },
                },
                "required": [
                    "name", "commonName", "probability", "description",
                    "treatmentAdvice", "whenToSeeDoctor", "isSeriousCondition",
                ],
            },
        },
        "recommendations": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "General recommendations for the patient (e.g., consult doctor, rest).",
        },
        "urgencyLevel": {
            "type": "STRING",
            "description": "Assessment of urgency: low, medium, high, or emergency.",
            "enum": URGENCY_LEVELS,
        },
    },
    "required": ["conditions", "recommendations", "urgencyLevel"],
}

API_KEY_ERROR = (
    "API Key Error (Status 403): The GEMINI_API_KEY is invalid, missing or rate limited."
)
GENERIC_FAILURE = "Failed to process diagnosis. Check server logs."


class GeminiClient:
    """Minimal async client for ``models/*:generateContent`` with bounded retries.

    A 403 is treated as a credential/quota problem and raised at once; any
    other failure is retried with exponential backoff until the attempt cap.
    """

    def __init__(
        self,
        api_key: str,
        *,
        url: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key
        self.url = url or settings.GEMINI_API_URL
        self.max_retries = settings.AI_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_base = settings.AI_BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        self.timeout = settings.AI_TIMEOUT_SECONDS if timeout is None else timeout
        self._transport = transport

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.post(
                self.url,
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
            )

    async def generate(self, payload: dict[str, Any]) -> dict[str, Any]:
        for attempt in range(self.max_retries):
            try:
                response = await self._post(payload)
                if response.status_code == 403:
                    raise UpstreamAuthError(API_KEY_ERROR)
                response.raise_for_status()
                return response.json()
            except UpstreamAuthError:
                logger.error("Gemini rejected the API key (403), not retrying")
                raise
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Gemini attempt %d/%d failed: %s", attempt + 1, self.max_retries, e)
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.backoff_base * 2 ** attempt)
        logger.error("Gemini API call failed after %d attempts", self.max_retries)
        raise UpstreamError("Gemini API call failed after multiple retries.")


def get_gemini_client() -> GeminiClient:
    """Route dependency; tests override it with a client on a mock transport."""
    return GeminiClient(get_settings().GEMINI_API_KEY)


# ---------------------------------------------------------------------------
# Prompting
# ---------------------------------------------------------------------------

def format_symptoms(symptoms: list[dict[str, Any]]) -> str:
    lines = []
    for symptom in symptoms:
        line = f"- {symptom.get('name', '')}"
        if symptom.get("severity"):
            line += f" ({symptom['severity']})"
        if symptom.get("duration"):
            line += f" for {symptom['duration']}"
        lines.append(line)
    return "\n".join(lines)


def build_request(
    symptoms: list[dict[str, Any]],
    age: Optional[int],
    gender: Optional[str],
    additional_info: Optional[str] = None,
) -> dict[str, Any]:
    symptoms_list = format_symptoms(symptoms)
    extra = f"\n- Additional info: {additional_info}" if additional_info else ""
    system_prompt = f"""You are a medical AI assistant helping to provide preliminary health information. Your sole purpose is to analyze the provided symptoms and return a precise JSON object matching the requested schema. DO NOT include any text outside the JSON object.

Patient Information:
- Age: {age}
- Gender: {gender}{extra}

Reported Symptoms:
{symptoms_list}

Instructions:
1. Provide 2-4 possible conditions ordered by probability (highest first).
2. Be conservative with the urgency assessment.
3. Always recommend consulting a healthcare professional.
4. Set IMPORTANT DISCLAIMER: This is NOT a medical diagnosis in the description field."""

    return {
        "contents": [{"parts": [{"text": symptoms_list}]}],
        "systemInstruction": {"parts": [{"text": system_prompt}]},
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": DIAGNOSIS_SCHEMA,
        },
    }


def extract_analysis(response: dict[str, Any]) -> Any:
    """Pull the structured JSON out of ``candidates[0].content.parts[0].text``."""
    try:
        text = response["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not text:
        logger.error("Gemini response carried no content: %s", str(response)[:500])
        raise UpstreamError("Gemini API did not return valid JSON content.")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.error("Gemini content is not JSON: %s", e)
        raise UpstreamError("Gemini API did not return valid JSON content.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def session_to_dict(session: DiagnosisSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "patientId": session.patient_id,
        "symptoms": session.symptoms or [],
        "age": session.age,
        "gender": session.gender,
        "additionalInfo": session.additional_info,
        "possibleConditions": session.possible_conditions,
        "recommendations": session.recommendations,
        "urgencyLevel": session.urgency_level,
        "status": session.status,
        "createdAt": session.created_at.isoformat() if session.created_at else None,
        "completedAt": session.completed_at.isoformat() if session.completed_at else None,
    }


async def start_diagnosis(
    db: AsyncSession,
    patient: User,
    client: GeminiClient,
    *,
    symptoms: Optional[list[dict[str, Any]]],
    age: Optional[int] = None,
    gender: Optional[str] = None,
    additional_info: Optional[str] = None,
    request: Request | None = None,
) -> dict[str, Any]:
    if patient.role != UserRole.PATIENT:
        raise Forbidden("Forbidden - Patient access only")
    if not symptoms:
        raise BadRequest("Please provide at least one symptom")
    if not client.api_key:
        raise UpstreamError("API Key Missing: GEMINI_API_KEY environment variable is not set on the server.")

    started = datetime.utcnow()
    millis = int(started.replace(tzinfo=timezone.utc).timestamp() * 1000)
    session_id = f"diag_{patient.id}_{millis}_{uuid.uuid4().hex[:6]}"

    try:
        response = await client.generate(build_request(symptoms, age, gender, additional_info))
        analysis = extract_analysis(response)
    except UpstreamAuthError:
        raise
    except UpstreamError as e:
        logger.error("AI analysis failed for patient %s: %s", patient.id, e.message)
        raise UpstreamError(GENERIC_FAILURE)

    fields = analysis if isinstance(analysis, dict) else {}
    completed = datetime.utcnow()
    session = DiagnosisSession(
        id=session_id,
        patient_id=patient.id,
        symptoms=symptoms,
        age=age,
        gender=gender,
        additional_info=additional_info,
        possible_conditions=fields.get("conditions"),
        recommendations=fields.get("recommendations"),
        urgency_level=fields.get("urgencyLevel") if isinstance(fields.get("urgencyLevel"), str) else None,
        raw_response=analysis,
        status="completed",
        created_at=started,
        completed_at=completed,
    )
    db.add(session)
    await db.flush()

    await log_audit(
        db,
        action="AI_DIAGNOSIS_COMPLETED",
        resource_type="diagnosisSession",
        resource_id=session_id,
        user_id=patient.id,
        metadata={"symptomCount": len(symptoms)},
        request=request,
    )
    logger.info("Diagnosis session %s completed for patient %s", session_id, patient.id)

    data: dict[str, Any] = {"sessionId": session_id}
    if isinstance(analysis, dict):
        data.update(analysis)
    else:
        data["result"] = analysis
    return data


async def list_history(db: AsyncSession, patient: User, *, limit: int = 20) -> list[dict[str, Any]]:
    result = await db.execute(
        select(DiagnosisSession)
        .where(DiagnosisSession.patient_id == patient.id)
        .order_by(DiagnosisSession.created_at.desc())
        .limit(limit)
    )
    return [session_to_dict(s) for s in result.scalars().all()]
