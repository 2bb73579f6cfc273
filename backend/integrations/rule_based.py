"""
Rule-Based Analyzer
Deterministic last link of the analysis chain. Always produces a valid
AIAnalysis, whatever the logs look like.
"""
from collections import Counter
from typing import Dict, List, Optional, Tuple

from core import (
    AIAnalysis, Incident, IncidentCategory, IncidentSeverity, IncidentStatus,
    Log, LogLevel, StatusSuggestion, SuggestedAction, TrendAnalysis
)


PROVIDER = "rule-based"

# Keywords in log messages that point at an incident category
CATEGORY_KEYWORDS: Dict[IncidentCategory, List[str]] = {
    IncidentCategory.DATABASE: [
        "database", "sql", "deadlock", "connection pool", "query", "postgres", "mysql", "replica lag",
    ],
    IncidentCategory.AUTHENTICATION: [
        "unauthorized", "forbidden", "token", "login", "credential", "401", "403", "jwt", "auth",
    ],
    IncidentCategory.NETWORK: [
        "connection refused", "econnrefused", "unreachable", "dns", "timed out", "timeout",
        "502", "503", "504", "network", "socket",
    ],
    IncidentCategory.DEPLOYMENT: [
        "deploy", "release", "rollout", "migration", "version", "config change", "image",
    ],
    IncidentCategory.PERFORMANCE: [
        "latency", "slow", "cpu", "memory", "out of memory", "oom", "throttl", "queue depth", "load",
    ],
}

# Suggested remediation per category: (action, description, confidence)
CATEGORY_ACTIONS: Dict[IncidentCategory, List[Tuple[str, str, float]]] = {
    IncidentCategory.DATABASE: [
        ("restart_connection_pool", "Recycle the service's database connection pool", 0.6),
        ("failover_database", "Fail over to the standby database replica", 0.4),
    ],
    IncidentCategory.AUTHENTICATION: [
        ("rotate_credentials", "Rotate the credentials or signing keys used by the service", 0.5),
        ("restart_service", "Restart the service to reload its auth configuration", 0.4),
    ],
    IncidentCategory.NETWORK: [
        ("restart_service", "Restart the unreachable service", 0.6),
        ("reroute_traffic", "Route traffic to a healthy instance or region", 0.5),
    ],
    IncidentCategory.DEPLOYMENT: [
        ("rollback_deployment", "Roll back to the previous release", 0.7),
    ],
    IncidentCategory.PERFORMANCE: [
        ("scale_replicas", "Add replicas to absorb the load", 0.6),
        ("flush_cache", "Flush the service cache", 0.3),
    ],
}

ROOT_CAUSE_TEMPLATES: Dict[IncidentCategory, str] = {
    IncidentCategory.DATABASE: "Database errors on {service}",
    IncidentCategory.AUTHENTICATION: "Authentication failures on {service}",
    IncidentCategory.NETWORK: "{service} is unreachable or timing out",
    IncidentCategory.DEPLOYMENT: "A recent deployment of {service} is failing",
    IncidentCategory.PERFORMANCE: "{service} is degraded under load",
}


def _error_rate(logs: List[Log]) -> float:
    if not logs:
        return 0.0
    return sum(1 for log in logs if log.level == LogLevel.ERROR) / len(logs)


def detect_category(incident: Incident, logs: List[Log]) -> Tuple[Optional[IncidentCategory], int]:
    """Category with the most keyword hits in the incident text and its problem logs."""
    texts = [incident.title, incident.description]
    texts.extend(log.message for log in logs if log.level != LogLevel.INFO)
    haystack = " ".join(texts).lower()

    hits = {
        category: sum(haystack.count(keyword) for keyword in keywords)
        for category, keywords in CATEGORY_KEYWORDS.items()
    }
    best = max(hits, key=lambda c: hits[c])
    if hits[best] == 0:
        return None, 0
    return best, hits[best]


def analyze_trend(logs: List[Log]) -> TrendAnalysis:
    """Compare the error rate of the older half of the logs with the newer half."""
    if len(logs) < 2:
        return TrendAnalysis(is_degrading=False, degradation_rate=0.0)

    ordered = sorted(logs, key=lambda log: log.created_at)
    middle = len(ordered) // 2
    rate = _error_rate(ordered[middle:]) - _error_rate(ordered[:middle])
    return TrendAnalysis(is_degrading=rate > 0, degradation_rate=round(rate, 3))


def assess_severity(logs: List[Log]) -> IncidentSeverity:
    errors = sum(1 for log in logs if log.level == LogLevel.ERROR)
    warnings = sum(1 for log in logs if log.level == LogLevel.WARNING)
    if errors >= 5 or (logs and errors / len(logs) >= 0.5):
        return IncidentSeverity.HIGH
    if errors or warnings:
        return IncidentSeverity.MEDIUM
    return IncidentSeverity.LOW


def suggest_status(
    incident: Incident,
    trend: TrendAnalysis,
    category_hits: int,
    logs: List[Log]
) -> StatusSuggestion:
    if incident.status == IncidentStatus.INVESTIGATING and logs and not trend.is_degrading:
        recent = sorted(logs, key=lambda log: log.created_at)[-3:]
        if all(log.level == LogLevel.INFO for log in recent):
            return StatusSuggestion.READY_FOR_RESOLUTION
    if category_hits >= 2:
        return StatusSuggestion.LIKELY_ROOT_CAUSE_IDENTIFIED
    return StatusSuggestion.NEEDS_INVESTIGATION


class RuleBasedAnalyzer:
    """Keyword and log-statistics analysis with no external calls."""

    def analyze(self, incident: Incident, logs: List[Log]) -> Tuple[AIAnalysis, str]:
        detected, hits = detect_category(incident, logs)
        category = detected or incident.category
        service = incident.service_name or "the affected service"

        errors = [log.message for log in logs if log.level == LogLevel.ERROR]
        top_error = Counter(message[:200] for message in errors).most_common(1)

        root_cause = ROOT_CAUSE_TEMPLATES[category].format(service=service)
        if top_error:
            message, count = top_error[0]
            root_cause = f"{root_cause}: '{message}' ({count}x)"

        if errors:
            probability = min(0.9, 0.3 + 0.1 * hits + 0.3 * _error_rate(logs))
        else:
            probability = 0.2 if detected else 0.1

        actions = [
            SuggestedAction(action=action, description=description, confidence=confidence)
            for action, description, confidence in CATEGORY_ACTIONS[category]
        ]
        actions.append(SuggestedAction(
            action="review_logs",
            description="Review the most recent error logs for this incident",
            confidence=0.9,
            requires_approval=False,
        ))

        trend = analyze_trend(logs)
        analysis = AIAnalysis(
            root_cause=root_cause,
            root_cause_probability=round(probability, 2),
            suggested_actions=actions,
            trend_analysis=trend,
            ai_severity=assess_severity(logs),
            ai_category=category,
            status_suggestion=suggest_status(incident, trend, hits, logs),
            provider=PROVIDER,
        )

        explanation = (
            f"Rule-based analysis of {len(logs)} log lines ({len(errors)} errors). "
            f"Category inferred as {category.value}"
            + (" from log keywords." if detected else " from the incident record.")
        )
        if trend.is_degrading:
            explanation += f" Error rate is rising ({trend.degradation_rate:+.0%})."
        return analysis, explanation


rule_based_analyzer = RuleBasedAnalyzer()
