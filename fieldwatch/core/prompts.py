"""Prompt templates for the operator-facing inference operations."""

from __future__ import annotations

from typing import Iterable

from ..schemas.inference import AlertContext, FleetUnitContext, NodeContext, NodeInfo, ReportMetrics
from ..schemas.feed import NetworkStatus

SUMMARY_TEMPLATE = """Generate a concise, professional alert summary for a perimeter security system.

Alert Type: {alert_type}
Node: {node_id}
Sector: {sector}
Node Status: {status}
Battery: {battery}%

Create a 2-3 sentence summary that:
- Describes the alert clearly
- Provides context about the location
- Indicates urgency level
- Uses professional military terminology

Keep it concise and actionable."""

THREAT_TEMPLATE = """You are an AI security analyst for a perimeter defense sensor network.
Analyze the following alerts from sensor nodes and provide a comprehensive threat assessment.

ALERT DATA:
{alerts}

NODE INFORMATION:
{nodes}

Provide your analysis in the following JSON format (respond ONLY with valid JSON, no markdown):
{{
  "threatLevel": "low|medium|high|critical",
  "summary": "Brief 2-3 sentence summary of the threat situation",
  "recommendations": ["Action 1", "Action 2", "Action 3"],
  "correlatedAlerts": ["Description of how alerts correlate"],
  "patternAnalysis": "Analysis of patterns across alerts",
  "estimatedRisk": "Risk assessment with reasoning",
  "confidence": 85
}}

Consider:
1. Alert types and their severity (gun, fire, help are critical)
2. Geographic proximity of alerts
3. Temporal patterns (alerts happening close in time)
4. Potential coordinated attacks
5. False positive likelihood
6. Recommended immediate actions for perimeter defense

Respond ONLY with valid JSON, no markdown formatting, no code blocks."""

RECOMMEND_TEMPLATE = """You are a tactical decision support system for a ground control station.

CURRENT SITUATION:
- Active Alerts: {alert_count}
- Alert Types: {alert_types}
- Network Status: {active_nodes}/{total_nodes} nodes active
- Available Drones: {available_units}
- Drone Status: {fleet}

Provide 3-5 immediate action recommendations in priority order.
Consider:
1. Alert severity and patterns
2. Available resources (drones, nodes)
3. Standard operating procedures for perimeter defense
4. Resource allocation efficiency

Format as a numbered list of actionable recommendations."""

ANOMALY_TEMPLATE = """Analyze if the following alert pattern is anomalous compared to normal operations.

RECENT ALERTS:
{alerts}

HISTORICAL PATTERN:
{historical}

Determine if this is an anomaly. Consider:
- Alert frequency vs normal
- Alert types and combinations
- Geographic distribution
- Temporal clustering

Respond in JSON format (ONLY JSON, no markdown):
{{
  "isAnomaly": true,
  "explanation": "Brief explanation",
  "confidence": 0,
  "suggestedActions": ["Action 1", "Action 2"]
}}"""

DEFAULT_HISTORICAL_PATTERN = "Normal operations: 2-3 alerts per hour, mostly motion/footsteps"

REPORT_TEMPLATE = """Generate a professional daily intelligence report for a perimeter defense system.

STATISTICS:
- Total Alerts: {total_alerts}
- Critical Alerts: {critical_alerts}
- Nodes Online: {nodes_online}
- Average Response Time: {avg_response_time_ms}ms

ALERT BREAKDOWN:
{alerts}

Create a comprehensive report with:
1. Executive Summary
2. Alert Analysis
3. Threat Assessment
4. Recommendations
5. Network Status

Use professional military reporting format."""

PATTERN_TEMPLATE = """Analyze alert patterns and trends for a perimeter defense system.

ALERTS (Last {time_window}):
{alerts}

Provide analysis on:
1. Alert frequency trends
2. Most common alert types
3. Geographic hotspots
4. Temporal patterns
5. Potential security concerns

Format as a structured analysis report."""


def _iso(ctx: AlertContext) -> str:
    return ctx.timestamp.isoformat()


def summary_prompt(alert: AlertContext, node_info: NodeInfo) -> str:
    return SUMMARY_TEMPLATE.format(
        alert_type=alert.alert_type,
        node_id=alert.node_id,
        sector=node_info.sector,
        status=node_info.status,
        battery=node_info.battery,
    )


def threat_prompt(alerts: Iterable[AlertContext], nodes: Iterable[NodeContext]) -> str:
    alert_lines = []
    for idx, a in enumerate(alerts, start=1):
        alert_lines.append(
            f"Alert {idx}:\n"
            f"- Type: {a.alert_type}\n"
            f"- Node: {a.node_id} ({a.sector or 'Unknown Sector'})\n"
            f"- Time: {_iso(a)}\n"
            f"- Location: {a.location or 'N/A'}\n"
            f"- Severity: {a.severity or 'unknown'}"
        )
    node_lines = [f"- {n.id}: {n.sector} at ({n.location.lat}, {n.location.lng})" for n in nodes]
    return THREAT_TEMPLATE.format(alerts="\n\n".join(alert_lines), nodes="\n".join(node_lines))


def recommend_prompt(
    alerts: list[AlertContext], network_status: NetworkStatus, fleet: list[FleetUnitContext]
) -> str:
    return RECOMMEND_TEMPLATE.format(
        alert_count=len(alerts),
        alert_types=", ".join(a.alert_type for a in alerts),
        active_nodes=network_status.active_nodes,
        total_nodes=network_status.total_nodes,
        available_units=sum(1 for u in fleet if u.status == "on_station"),
        fleet=", ".join(f"{u.id}: {u.status} ({u.battery}% battery)" for u in fleet),
    )


def anomaly_prompt(alerts: Iterable[AlertContext], historical_pattern: str) -> str:
    lines = [f"- {a.alert_type} at {a.node_id} ({_iso(a)})" for a in alerts]
    return ANOMALY_TEMPLATE.format(
        alerts="\n".join(lines),
        historical=historical_pattern or DEFAULT_HISTORICAL_PATTERN,
    )


def report_prompt(alerts: list[AlertContext], metrics: ReportMetrics, limit: int) -> str:
    lines = [f"- {a.alert_type} at {a.node_id} ({a.sector or 'Unknown'})" for a in alerts[:limit]]
    return REPORT_TEMPLATE.format(
        total_alerts=metrics.total_alerts,
        critical_alerts=metrics.critical_alerts,
        nodes_online=metrics.nodes_online,
        avg_response_time_ms=metrics.avg_response_time_ms,
        alerts="\n".join(lines),
    )


def pattern_prompt(alerts: Iterable[AlertContext], time_window: str) -> str:
    lines = [f"- {a.alert_type} at {a.node_id} in {a.sector or 'Unknown'} ({_iso(a)})" for a in alerts]
    return PATTERN_TEMPLATE.format(time_window=time_window, alerts="\n".join(lines))
