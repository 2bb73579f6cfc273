"""
AI Analysis Adapter
Sends incident context and logs to an OpenAI-compatible chat completions
endpoint and falls back (primary model -> secondary model -> rules) until
one path yields a usable analysis.
"""
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from core import (
    AIAnalysis, Incident, IncidentAnalysisResponse, IncidentCategory, IncidentRef,
    IncidentSeverity, Log, LogLevel, StatusSuggestion, SuggestedAction, TrendAnalysis,
    UpstreamUnavailableError, config, logger
)
from engines import IncidentStore
from .rule_based import RuleBasedAnalyzer, rule_based_analyzer


SYSTEM_PROMPT = (
    "You are an incident analysis assistant. You only analyse; you never execute "
    "actions. Reply with a single JSON object and nothing else."
)


def build_prompt(incident: Incident, logs: List[Log], max_logs: Optional[int] = None) -> str:
    """Build the analysis prompt from the incident record and its logs."""
    if max_logs is None:
        max_logs = config.AI_MAX_LOGS_IN_PROMPT
    prompt_parts = [
        "Analyze the following incident and provide root cause analysis.",
        "",
        "## Incident:",
        f"- Title: {incident.title}",
        f"- Description: {incident.description or 'n/a'}",
        f"- Service: {incident.service_name or 'unknown'}",
        f"- Status: {incident.status.value}",
        f"- Severity: {incident.severity.value}",
        f"- Category: {incident.category.value}",
        f"- First detected: {incident.metadata.first_detected_at.isoformat()}",
    ]

    if logs:
        shown = logs[-max_logs:] if max_logs > 0 else logs
        prompt_parts.append(f"\n## Logs ({len(shown)} of {len(logs)}, oldest first):")
        for log in shown:
            prompt_parts.append(f"- {log.created_at.isoformat()} [{log.level.value.upper()}] {log.message[:300]}")
    else:
        prompt_parts.append("\n## Logs: none recorded")

    prompt_parts.extend([
        "",
        "Respond with a JSON object with these fields:",
        "- root_cause: string",
        "- root_cause_probability: number between 0 and 1",
        "- suggested_actions: array of objects with action, description, confidence (0-1), requires_approval (boolean)",
        "- trend_analysis: object with is_degrading (boolean) and degradation_rate (number)",
        "- severity: one of low, medium, high",
        "- category: one of performance, database, authentication, network, deployment",
        "- status_suggestion: one of needs_investigation, likely_root_cause_identified, ready_for_resolution",
        "- explanation: string (short summary for the engineer)",
        "",
        "Remember: Output ONLY valid JSON. No other text.",
    ])
    return "\n".join(prompt_parts)


def extract_content(result: Dict[str, Any]) -> str:
    """Extract message content from a chat completions response."""
    for choice in result.get("choices") or []:
        content = (choice.get("message") or {}).get("content")
        if content:
            return content

    for key in ["content", "response", "text", "output"]:
        if result.get(key):
            return str(result[key])
    return ""


def extract_json(content: str) -> Optional[Dict[str, Any]]:
    """Pull the first JSON object out of a model reply (fenced block or raw)."""
    if not content:
        return None

    candidates = []
    fenced = re.search(r'```(?:json)?\s*(.*?)\s*```', content, re.DOTALL)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = content.find("{"), content.rfind("}")
    if start != -1 and end > start:
        candidates.append(content[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _get(data: Dict[str, Any], *keys: str) -> Any:
    """First present key; models answer in both snake_case and camelCase."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _probability(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def _enum(enum_cls, value: Any):
    """Enum member for value, or None for anything unrecognised."""
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        return None


def _flag(value: Any, default: bool) -> bool:
    """Models send booleans as true/false, "false", "no", 0..."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def normalize_analysis(data: Dict[str, Any], provider: str) -> Tuple[AIAnalysis, str]:
    """Turn loosely-shaped model output into a valid AIAnalysis."""
    raw_actions = _get(data, "suggested_actions", "suggestedActions", "recommended_actions")
    if not isinstance(raw_actions, list):
        raw_actions = []

    actions = []
    for raw in raw_actions:
        if isinstance(raw, str):
            raw = {"action": raw}
        if not isinstance(raw, dict) or not raw.get("action"):
            continue
        actions.append(SuggestedAction(
            action=str(raw["action"])[:200],
            description=str(_get(raw, "description", "reason") or "")[:500],
            confidence=_probability(raw.get("confidence"), 0.5),
            requires_approval=_flag(_get(raw, "requires_approval", "requiresApproval"), True),
        ))

    trend = None
    raw_trend = _get(data, "trend_analysis", "trendAnalysis")
    if isinstance(raw_trend, dict):
        try:
            rate = float(_get(raw_trend, "degradation_rate", "degradationRate") or 0.0)
        except (TypeError, ValueError):
            rate = 0.0
        trend = TrendAnalysis(
            is_degrading=_flag(_get(raw_trend, "is_degrading", "isDegrading"), False),
            degradation_rate=rate,
        )

    root_cause = str(_get(data, "root_cause", "rootCause") or "").strip()
    analysis = AIAnalysis(
        root_cause=root_cause[:1000],
        root_cause_probability=_probability(_get(data, "root_cause_probability", "rootCauseProbability"), 0.5),
        suggested_actions=actions,
        trend_analysis=trend,
        ai_severity=_enum(IncidentSeverity, _get(data, "severity", "ai_severity", "aiSeverity")),
        ai_category=_enum(IncidentCategory, _get(data, "category", "ai_category", "aiCategory")),
        status_suggestion=_enum(StatusSuggestion, _get(data, "status_suggestion", "statusSuggestion")),
        provider=provider,
    )
    explanation = str(_get(data, "explanation", "summary") or root_cause or "Analysis complete")
    return analysis, explanation[:2000]


class InferenceClient:
    """Client for one model behind an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else config.AI_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.model)

    @property
    def provider(self) -> str:
        return self.model

    async def complete(self, prompt: str) -> str:
        """Send one chat completion request and return the reply text."""
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        request_data = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/chat/completions", json=request_data, headers=headers)
        except httpx.TimeoutException:
            raise UpstreamUnavailableError(f"{self.model} timed out after {self.timeout:g}s")
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(f"{self.model} request failed: {e}")

        if response.status_code != 200:
            raise UpstreamUnavailableError(
                f"{self.model} returned HTTP {response.status_code}",
                {"response": response.text[:500]}
            )

        try:
            result = response.json()
        except ValueError:
            raise UpstreamUnavailableError(f"{self.model} returned a non-JSON body")

        content = extract_content(result) if isinstance(result, dict) else ""
        if not content:
            raise UpstreamUnavailableError(f"{self.model} returned an empty reply")
        return content

    async def analyze(self, incident: Incident, logs: List[Log]) -> Tuple[AIAnalysis, str]:
        content = await self.complete(build_prompt(incident, logs))
        data = extract_json(content)
        if data is None:
            raise UpstreamUnavailableError(f"{self.model} reply contained no JSON object", {"reply": content[:300]})
        try:
            return normalize_analysis(data, self.provider)
        except (TypeError, ValueError) as e:
            raise UpstreamUnavailableError(f"{self.model} reply was not a usable analysis: {e}", {"reply": content[:300]})


class AnalysisService:
    """Runs the fallback chain and stores the resulting snapshot."""

    def __init__(
        self,
        clients: Optional[List[InferenceClient]] = None,
        rule_based: Optional[RuleBasedAnalyzer] = None
    ):
        if clients is None:
            clients = [
                InferenceClient(config.AI_API_URL, model, api_key=config.AI_API_KEY)
                for model in (config.AI_PRIMARY_MODEL, config.AI_SECONDARY_MODEL)
            ]
        self.clients = clients
        self.rule_based = rule_based or rule_based_analyzer

    async def _run_chain(self, incident: Incident, logs: List[Log]) -> Tuple[AIAnalysis, str]:
        for client in self.clients:
            if not client.configured:
                continue

            logger.log_analysis_request(incident.id, client.provider, len(logs))
            try:
                analysis, explanation = await client.analyze(incident, logs)
            except UpstreamUnavailableError as e:
                logger.log_analysis_response(incident.id, client.provider, False, {"error": e.message})
                continue

            logger.log_analysis_response(incident.id, client.provider, True, {
                "action_count": len(analysis.suggested_actions)
            })
            return analysis, explanation

        analysis, explanation = self.rule_based.analyze(incident, logs)
        logger.log_analysis_response(incident.id, analysis.provider, True, {
            "action_count": len(analysis.suggested_actions)
        })
        return analysis, explanation

    async def analyze(self, db: AsyncSession, incident_id: str) -> IncidentAnalysisResponse:
        """
        Analyze an incident and replace its analysis snapshot.

        Only an unknown incident id raises (NotFoundError); inference failures
        fall through to the rule-based analyzer.
        """
        store = IncidentStore(db)
        incident = await store.get(incident_id)
        logs = await store.list_logs(incident_id)

        analysis, explanation = await self._run_chain(incident, logs)
        analysis.related_incident_ids = await store.related_incident_ids(incident)
        await store.attach_analysis(incident.id, analysis)

        return IncidentAnalysisResponse(
            incident=IncidentRef(
                id=incident.id,
                title=incident.title,
                status=incident.status,
                severity=incident.severity,
                category=incident.category,
            ),
            ai_analysis=analysis,
            explanation=explanation,
            logs_analyzed=len(logs),
            error_count=sum(1 for log in logs if log.level == LogLevel.ERROR),
            warning_count=sum(1 for log in logs if log.level == LogLevel.WARNING),
        )


analysis_service = AnalysisService()


def get_analysis_service() -> AnalysisService:
    """FastAPI dependency; overridden in tests."""
    return analysis_service
