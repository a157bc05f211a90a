import asyncio
import json
import logging
import re

from google import genai
from google.genai import types

from config import GEMINI_API_KEY, SCORING_MODEL

log = logging.getLogger("gennie.scoring")

RECOMMENDATIONS = ("Strong Hire", "Hire", "Weak Hire", "Reject")


class ScoringError(Exception):
    pass


def parse_model_json(text: str) -> dict:
    """Parse a JSON object out of a model reply, tolerating code fences and chatter."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if "```" in text:
            text = text[:text.rfind("```")]
    text = text.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise
        data = json.loads(match.group())
    if not isinstance(data, dict):
        raise ValueError("Model reply is not a JSON object")
    return data


def build_scoring_prompt(
    transcript: str,
    job_description: str | None,
    resume: str | None,
    interview_type: str,
    difficulty: str,
) -> str:
    prompt = (
        "You are an expert technical recruiter. Analyze the following interview transcript "
        "against the job description and candidate resume.\n\n"
        f"Interview type: {interview_type}\nDifficulty level: {difficulty}\n\n"
    )
    if job_description:
        prompt += f"JOB DESCRIPTION:\n{job_description}\n\n"
    if resume:
        prompt += f"CANDIDATE RESUME:\n{resume}\n\n"
    prompt += f"TRANSCRIPT:\n{transcript}\n\n"
    prompt += f"""Produce a JSON response with EXACTLY this structure:
{{
  "score": 0-100,
  "summary": "A concise 2-3 sentence summary of the interview",
  "key_pros": ["3-5 key strengths demonstrated"],
  "key_cons": ["3-5 key weaknesses or missing skills"],
  "recommendation": "{'|'.join(RECOMMENDATIONS)}"
}}

Judge the answers against what a {difficulty} {interview_type} interview should reveal.
IMPORTANT: Return ONLY valid JSON, no markdown, no extra text."""
    return prompt


class GeminiScoringEngine:
    """Scores a finished interview with Gemini. Raises on any failure."""

    def __init__(self, api_key: str | None = GEMINI_API_KEY, model: str = SCORING_MODEL):
        self._api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise ScoringError("GEMINI_API_KEY not configured")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def analyze(
        self,
        transcript: str,
        job_description: str | None,
        resume: str | None,
        interview_type: str,
        difficulty: str,
    ) -> dict:
        prompt = build_scoring_prompt(transcript, job_description, resume, interview_type, difficulty)
        client = self._get_client()
        response = await asyncio.to_thread(
            client.models.generate_content,
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction="You are a strict and fair recruitment AI. Output ONLY JSON.",
                response_mime_type="application/json",
            ),
        )
        try:
            result = parse_model_json(response.text)
        except ValueError as e:
            raise ScoringError(f"Scoring model returned invalid JSON: {e}") from e
        missing = [k for k in ("score", "summary", "recommendation") if k not in result]
        if missing:
            raise ScoringError(f"Scoring result missing fields: {', '.join(missing)}")
        log.info("event=scoring_done score=%s recommendation=%s", result.get("score"), result.get("recommendation"))
        return result
