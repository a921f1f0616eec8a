"""Deterministic stand-ins for the lead-scoring, conversation, email and forecasting agents.

They let the bundled workflows validate and run without any model or CRM
access. Real agents are plugged in through the same capability registry.
"""

import hashlib
from datetime import datetime, timedelta
from typing import Any, Dict, List

from ..core.capabilities import CapabilityRegistry
from ..core.logging import get_logger

logger = get_logger(__name__)


def _stable_fraction(*parts: Any) -> float:
    """Map arbitrary values to a repeatable number in [0, 1)."""
    digest = hashlib.sha256("|".join(str(p) for p in parts).encode("utf-8")).hexdigest()
    return int(digest[:8], 16) / 0x100000000


# Lead scoring

def enrich_lead(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill in firmographic data for a lead.

    Args:
        params: Execution context merged with step parameters; uses ``leadId``, ``company`` and ``email``

    Returns:
        Dictionary with the enriched lead record
    """
    lead_id = params.get("leadId", "unknown")
    company = params.get("company") or (params.get("email", "").split("@")[-1] or "unknown")
    size_bucket = int(_stable_fraction(lead_id, company) * 4)
    enriched = {
        "leadId": lead_id,
        "company": company,
        "companySize": ["1-10", "11-50", "51-200", "201-1000"][size_bucket],
        "industry": params.get("industry", "software"),
        "enrichedAt": datetime.utcnow().isoformat(),
    }
    logger.debug(f"Enriched lead {lead_id}: {enriched}")
    return enriched


def analyze_fit(params: Dict[str, Any]) -> Dict[str, Any]:
    score = float(params.get("leadScore", 50))
    technical_fit = round(min(1.0, score / 100 + 0.05), 2)
    business_fit = round(min(1.0, 0.4 + _stable_fraction(params.get("leadId")) * 0.6), 2)
    return {
        "technicalFit": technical_fit,
        "businessFit": business_fit,
        "overallFit": round((technical_fit + business_fit) / 2, 2),
        "recommendation": "pursue" if technical_fit >= 0.7 else "nurture",
    }


def update_score_from_call(params: Dict[str, Any]) -> Dict[str, Any]:
    current = float(params.get("leadScore", 50))
    adjustment = {"positive": 10, "neutral": 0, "negative": -15}.get(params.get("callOutcome"), 0)
    new_score = max(0.0, min(100.0, current + adjustment))
    return {"previousScore": current, "leadScore": new_score, "adjustment": adjustment}


# Conversation

def generate_call_summary(params: Dict[str, Any]) -> Dict[str, Any]:
    transcript = params.get("transcript", "")
    words = transcript.split()
    return {
        "callId": params.get("callId"),
        "summary": " ".join(words[:30]) if words else "No transcript provided",
        "wordCount": len(words),
        "sentiment": params.get("callOutcome", "neutral"),
        "actionItems": ["send follow-up"] if params.get("followUpRequired") else [],
    }


def escalate_opportunity(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "escalated": True,
        "dealId": params.get("dealId"),
        "assignedTo": params.get("salesManager", "sales-manager"),
        "priority": params.get("priority", "urgent"),
        "signalStrength": params.get("strength"),
    }


# Email

def create_email_sequence(params: Dict[str, Any]) -> Dict[str, Any]:
    sequence_type = params.get("sequenceType", "standard")
    steps = 5 if params.get("personalizationLevel") == "high" else 3
    return {
        "sequenceId": f"seq-{params.get('leadId', 'unknown')}-{sequence_type}",
        "sequenceType": sequence_type,
        "emailCount": steps,
        "firstSendAt": (datetime.utcnow() + timedelta(hours=1)).isoformat(),
    }


def trigger_follow_up_sequence(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "sequenceId": f"follow-up-{params.get('callId', params.get('leadId', 'unknown'))}",
        "triggered": True,
    }


def pause_sequence(params: Dict[str, Any]) -> Dict[str, Any]:
    return {"paused": True, "leadId": params.get("leadId"), "reason": "buying_signal"}


def schedule_demo(params: Dict[str, Any]) -> Dict[str, Any]:
    slot = datetime.utcnow().replace(minute=0, second=0, microsecond=0) + timedelta(days=1)
    return {"scheduled": True, "dealId": params.get("dealId"), "slot": slot.isoformat()}


def send_forecast_report(params: Dict[str, Any]) -> Dict[str, Any]:
    recipients: List[str] = params.get("recipients", ["sales-leadership"])
    return {"sent": True, "recipients": recipients, "sentAt": datetime.utcnow().isoformat()}


# Forecasting

def update_pipeline_forecast(params: Dict[str, Any]) -> Dict[str, Any]:
    deal_value = float(params.get("dealValue", params.get("estimatedValue", 0)))
    probability = round(float(params.get("leadScore", 50)) / 100, 2)
    return {"weightedValue": round(deal_value * probability, 2), "probability": probability}


def analyze_deal_probability(params: Dict[str, Any]) -> Dict[str, Any]:
    base = float(params.get("probability", 0.3))
    shift = {"positive": 0.15, "negative": -0.2}.get(params.get("callOutcome"), 0.0)
    return {"dealId": params.get("dealId"), "probability": round(max(0.0, min(1.0, base + shift)), 2)}


def update_deal_urgency(params: Dict[str, Any]) -> Dict[str, Any]:
    strength = float(params.get("strength", 0))
    return {"dealId": params.get("dealId"), "urgency": "high" if strength >= 0.85 else "elevated"}


def generate_revenue_forecast(params: Dict[str, Any]) -> Dict[str, Any]:
    pipeline = params.get("pipeline", [])
    committed = sum(float(deal.get("value", 0)) * float(deal.get("probability", 0)) for deal in pipeline)
    forecast = {
        "timeRange": params.get("timeRange", "next_quarter"),
        "expected": round(committed, 2),
        "dealCount": len(pipeline),
    }
    if params.get("includeScenarios"):
        forecast["scenarios"] = {"low": round(committed * 0.8, 2), "high": round(committed * 1.2, 2)}
    if params.get("confidenceIntervals"):
        forecast["confidence"] = 0.8
    return forecast


def analyze_pipeline_health(params: Dict[str, Any]) -> Dict[str, Any]:
    pipeline = params.get("pipeline", [])
    stale = [deal.get("id") for deal in pipeline if deal.get("daysSinceActivity", 0) > 30]
    return {"dealCount": len(pipeline), "staleDeals": stale, "healthy": len(stale) == 0}


def identify_at_risk_deals(params: Dict[str, Any]) -> Dict[str, Any]:
    pipeline = params.get("pipeline", [])
    at_risk = [
        deal.get("id") for deal in pipeline
        if float(deal.get("probability", 1)) < 0.3 or deal.get("daysSinceActivity", 0) > 30
    ]
    return {"atRiskDeals": at_risk, "count": len(at_risk)}


DEMO_AGENTS = {
    "lead-scoring": (
        "Scores and enriches inbound leads",
        {
            "enrichLead": enrich_lead,
            "analyzeFit": analyze_fit,
            "updateScoreFromCall": update_score_from_call,
        },
    ),
    "conversation": (
        "Summarizes calls and escalates opportunities",
        {
            "generateCallSummary": generate_call_summary,
            "escalateOpportunity": escalate_opportunity,
        },
    ),
    "email": (
        "Builds and manages outreach sequences",
        {
            "createEmailSequence": create_email_sequence,
            "triggerFollowUpSequence": trigger_follow_up_sequence,
            "pauseSequence": pause_sequence,
            "scheduleDemo": schedule_demo,
            "sendForecastReport": send_forecast_report,
        },
    ),
    "forecasting": (
        "Maintains the revenue forecast",
        {
            "updatePipelineForecast": update_pipeline_forecast,
            "analyzeDealProbability": analyze_deal_probability,
            "updateDealUrgency": update_deal_urgency,
            "generateRevenueForecast": generate_revenue_forecast,
            "analyzePipelineHealth": analyze_pipeline_health,
            "identifyAtRiskDeals": identify_at_risk_deals,
        },
    ),
}


def register_demo_agents(capabilities: CapabilityRegistry) -> None:
    """Register the demo capability tables for every agent not already registered."""
    registered = {agent["agent_id"] for agent in capabilities.list_agents()}
    for agent_id, (description, table) in DEMO_AGENTS.items():
        if agent_id in registered:
            logger.info(f"Agent already registered, keeping it: {agent_id}")
            continue
        capabilities.register_agent(agent_id, table, description=description)
    logger.info("Demo agents registration completed")
