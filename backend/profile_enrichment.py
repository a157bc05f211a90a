"""Fill empty candidate profile fields from what they said in the interview.

Runs after a successful analysis. It never touches analysis state and never
overwrites a field that already holds a value.
"""

import asyncio
import logging
import re

from google import genai
from google.genai import types

from config import EXTRACTION_MODEL, GEMINI_API_KEY
from models import Candidate
from scoring import parse_model_json

log = logging.getLogger("gennie.enrichment")

MIN_TRANSCRIPT_CHARS = 100
CHUNK_THRESHOLD = 10000
CHUNK_SIZE = 8000

SCALAR_FIELDS = (
    "skills",
    "experience_summary",
    "work_authorization",
    "salary_expectation",
    "city",
    "state",
    "linkedin_url",
)
LIST_FIELDS = {
    "work_history": ("company", "title"),
    "education": ("institution", "degree"),
    "certificates": ("name",),
}
PROFILE_FIELDS = SCALAR_FIELDS + tuple(LIST_FIELDS)

_SPEAKER_TURN_RE = re.compile(r"\n(Candidate|Agent|User|Human|Assistant):", re.IGNORECASE)

_EXTRACTION_PROMPT = """Extract candidate information from this interview transcript.
ONLY extract what the candidate explicitly states about themselves.

## Fields to Extract:
- skills (string|null): Technical and soft skills mentioned, comma-separated
- experience_summary (string|null): Brief summary of their experience if they describe it
- work_history (array|null): Jobs mentioned with company, title, dates if stated
- education (array|null): Degrees/schools mentioned
- certificates (array|null): Certifications mentioned
- work_authorization (string|null): Only if explicitly discussed
- salary_expectation (string|null): Only if explicitly stated
- city (string|null): City they live in if mentioned
- state (string|null): State they live in if mentioned
- linkedin_url (string|null): Only if they explicitly share it

## Rules:
1. ONLY extract what the CANDIDATE says, not the interviewer
2. If information is not explicitly stated, use null
3. For work_history array: [{{company, title, start_date, end_date, description}}]
4. For education array: [{{institution, degree, field, end_date}}]
5. For certificates array: [{{name, issuer}}]

Return ONLY valid JSON.

## Transcript:
{transcript}"""


def _is_empty(value) -> bool:
    return value is None or value == "" or value == [] or value == {}


def split_into_chunks(text: str, chunk_size: int = CHUNK_SIZE) -> list[str]:
    """Split at speaker turns where possible, else paragraph or line breaks."""
    chunks: list[str] = []
    pos = 0
    length = len(text)
    while pos < length:
        end = min(pos + chunk_size, length)
        if end < length:
            search_start = pos + int(chunk_size * 0.7)
            segment = text[search_start:end]
            match = _SPEAKER_TURN_RE.search(segment)
            if match:
                end = search_start + match.start()
            elif "\n\n" in segment:
                end = search_start + segment.rfind("\n\n")
            elif "\n" in segment:
                end = search_start + segment.rfind("\n")
        chunk = text[pos:end].strip()
        if chunk:
            chunks.append(chunk)
        if end <= pos:
            end = min(pos + chunk_size, length)
        pos = end
    return chunks


def _dedupe_by_keys(items: list, keys: tuple[str, ...]) -> list[dict]:
    seen: set[str] = set()
    unique: list[dict] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        key = "|".join(str(item.get(k) or "").lower() for k in keys)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def merge_results(results: list[dict]) -> dict:
    """Scalars: first non-empty value wins. Lists: concatenated and de-duplicated."""
    results = [r for r in results if r]
    if not results:
        return {}
    merged: dict = {field: None for field in SCALAR_FIELDS}
    merged.update({field: [] for field in LIST_FIELDS})
    for result in results:
        for field in SCALAR_FIELDS:
            if _is_empty(merged[field]) and not _is_empty(result.get(field)):
                merged[field] = result[field]
        for field in LIST_FIELDS:
            value = result.get(field)
            if isinstance(value, list):
                merged[field].extend(value)
    for field, keys in LIST_FIELDS.items():
        merged[field] = _dedupe_by_keys(merged[field], keys)
    return merged


def normalize_extracted(data: dict) -> dict:
    out = {field: data.get(field) for field in PROFILE_FIELDS}
    skills = out.get("skills")
    if isinstance(skills, str):
        out["skills"] = [s.strip() for s in skills.split(",") if s.strip()]
    for field in LIST_FIELDS:
        if out.get(field) is not None and not isinstance(out[field], list):
            out[field] = None
    return out


class GeminiProfileExtractor:
    """Extracts profile fields from one transcript chunk; returns {} on failure."""

    def __init__(self, api_key: str | None = GEMINI_API_KEY, model: str = EXTRACTION_MODEL):
        self._api_key = api_key
        self.model = model
        self._client = None

    async def __call__(self, chunk: str) -> dict:
        if not self._api_key:
            log.warning("event=extraction_skipped reason=no_api_key")
            return {}
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        try:
            response = await asyncio.to_thread(
                self._client.models.generate_content,
                model=self.model,
                contents=_EXTRACTION_PROMPT.format(transcript=chunk),
                config=types.GenerateContentConfig(
                    system_instruction=(
                        "You are extracting candidate profile information from an interview transcript. "
                        "Extract ONLY information explicitly stated by the candidate. Do NOT infer or guess."
                    ),
                    response_mime_type="application/json",
                    temperature=0.1,
                ),
            )
            return parse_model_json(response.text)
        except Exception as e:
            log.error("event=extraction_chunk_failed error=%s", e)
            return {}


class ProfileEnricher:
    def __init__(self, extractor=None):
        self._extractor = extractor or GeminiProfileExtractor()

    async def extract(self, transcript: str) -> dict:
        if len(transcript) < MIN_TRANSCRIPT_CHARS:
            return {}
        if len(transcript) <= CHUNK_THRESHOLD:
            return await self._extractor(transcript)
        chunks = split_into_chunks(transcript)
        log.info("event=extraction_chunked chunks=%d chars=%d", len(chunks), len(transcript))
        results = [await self._extractor(chunk) for chunk in chunks]
        return merge_results(results)

    async def enrich(self, db, session, transcript: str) -> list[str]:
        """Write extracted values into empty candidate fields; returns the fields written."""
        if not session.candidate_id:
            return []
        candidate = await db.get(Candidate, session.candidate_id)
        if candidate is None:
            return []
        extracted = await self.extract(transcript)
        if not extracted:
            return []
        extracted = normalize_extracted(extracted)

        updated: list[str] = []
        for field in PROFILE_FIELDS:
            value = extracted.get(field)
            if _is_empty(value) or not _is_empty(getattr(candidate, field)):
                continue
            setattr(candidate, field, value)
            updated.append(field)
        if updated:
            await db.commit()
            log.info("event=profile_enriched candidate_id=%s fields=%s", candidate.id, ",".join(updated))
        return updated
