"""Student performance analysis backed by the Gemini generateContent API."""

import json
import logging
from typing import Any, Dict, List

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from requests import RequestException

from merittrac.config.settings import settings
from merittrac.core.errors import ExternalCallError

logger = logging.getLogger(__name__)


class AnalysisServiceError(ExternalCallError):
    pass


class MarksEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    semester: str
    subject: str
    ca1: float
    ca2: float
    mid_term: float = Field(alias="midTerm")
    end_term: float = Field(alias="endTerm")


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_name: str = Field(alias="studentName")
    student_id: str = Field(alias="studentId")
    marks_data: List[MarksEntry] = Field(alias="marksData")


class PerformanceAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    overall_performance: str = Field(alias="overallPerformance")
    strengths: str
    weaknesses: str
    recommendations: str


RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "overallPerformance": {"type": "STRING"},
        "strengths": {"type": "STRING"},
        "weaknesses": {"type": "STRING"},
        "recommendations": {"type": "STRING"},
    },
    "required": ["overallPerformance", "strengths", "weaknesses", "recommendations"],
}

PROMPT_HEADER = """You are an AI assistant that analyzes student performance based on their marks data.

Analyze the student's performance across different subjects and semesters. Identify their strengths and weaknesses, and provide recommendations for improvement.
"""

PROMPT_FOOTER = """
Based on the data provided, generate an overall performance summary, identify strengths and weaknesses, and provide actionable recommendations.
Make sure the recommendations are very specific to the student's data and suggest specific study habits or resources.
Ensure the overall performance, strengths, weaknesses and recommendations are easy to understand and directly related to the marks data.
"""


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def build_prompt(request: AnalysisRequest) -> str:
    lines = [
        PROMPT_HEADER,
        f"Student Name: {request.student_name}",
        f"Student ID: {request.student_id}",
        "",
        "Marks Data:",
    ]
    for entry in request.marks_data:
        lines.append(
            f"Semester: {entry.semester}, Subject: {entry.subject}, "
            f"CA1: {_fmt(entry.ca1)}, CA2: {_fmt(entry.ca2)}, "
            f"Mid Term: {_fmt(entry.mid_term)}, End Term: {_fmt(entry.end_term)}"
        )
    lines.append(PROMPT_FOOTER)
    return "\n".join(lines)


class PerformanceAnalysisService:
    def __init__(self, api_key: str, model: str, endpoint: str, timeout: float = 15.0) -> None:
        if not api_key:
            raise AnalysisServiceError("Missing GEMINI_API_KEY in environment")
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "PerformanceAnalysisService":
        return cls(
            settings.gemini_api_key,
            settings.gemini_model,
            settings.gemini_endpoint,
            timeout=settings.http_timeout_seconds,
        )

    def analyze(self, request: AnalysisRequest) -> PerformanceAnalysis:
        url = f"{self.endpoint}/models/{self.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": build_prompt(request)}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }
        try:
            res = requests.post(url, params={"key": self.api_key}, json=body, timeout=self.timeout)
        except RequestException as exc:
            logger.error("Gemini request failed: %s", exc)
            raise AnalysisServiceError("ANALYSIS_SERVICE_UNAVAILABLE") from exc

        try:
            data = res.json()
        except ValueError:
            raise AnalysisServiceError("ANALYSIS_SERVICE_UNAVAILABLE")

        if res.status_code >= 400:
            error = data.get("error") or {}
            logger.error("Gemini returned %s: %s", res.status_code, error.get("message"))
            raise AnalysisServiceError(str(error.get("message") or "ANALYSIS_ERROR"))

        return self._parse(data)

    @staticmethod
    def _parse(data: Dict[str, Any]) -> PerformanceAnalysis:
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AnalysisServiceError("EMPTY_ANALYSIS_RESPONSE") from exc

        try:
            return PerformanceAnalysis.model_validate(json.loads(text))
        except (ValueError, PydanticValidationError) as exc:
            raise AnalysisServiceError("INVALID_ANALYSIS_RESPONSE") from exc
