"""
Comply Agent Control API

FastAPI service exposing asset facts, scans, violations, incidents,
playbooks and the execution ledger.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from comply_agent import __version__
from comply_agent.agent import ComplianceAgent
from comply_agent.config import configure_logging, settings
from comply_agent.errors import InvalidStatusTransition, PlaybookDefinitionError
from comply_agent.monitor.inventory import (
    CertificateInfo,
    DNSRecord,
    DNSRecordType,
    DomainRecord,
    IPRecord,
    IPReputation,
)
from comply_agent.orchestrator.playbooks import Playbook
from comply_agent.store.models import (
    AssetType,
    ComplianceFramework,
    EvidenceType,
    IncidentEventType,
    IncidentStatus,
    Policy,
    PolicyStatus,
    Priority,
    Severity,
    ViolationEvidence,
    ViolationStatus,
)

configure_logging(settings)

logger = structlog.get_logger(__name__)


# === Pydantic Models for API ===

class AssetRequest(BaseModel):
    """Register an asset for monitoring."""
    type: AssetType
    identifier: str
    organization_id: Optional[str] = None


class DNSRecordModel(BaseModel):
    type: DNSRecordType
    name: str
    value: str
    ttl: int = 3600


class DomainFactsRequest(BaseModel):
    """Cached DNS facts for a domain."""
    domain: str
    dns_records: list[DNSRecordModel] = Field(default_factory=list)
    registrar: str = ""
    nameservers: list[str] = Field(default_factory=list)


class IPFactsRequest(BaseModel):
    """Cached reputation facts for an IP address."""
    ip: str
    reputation: IPReputation = IPReputation.UNKNOWN
    is_tor: bool = False
    is_private: bool = False
    is_proxy: bool = False
    is_vpn: bool = False
    country: str = ""
    asn: int = 0
    asn_org: str = ""


class CertificateFactsRequest(BaseModel):
    """Cached TLS facts for a certificate."""
    domain: str
    days_until_expiry: int
    is_valid: bool = True
    issuer: str = ""
    subject: str = ""
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


class PolicyRequest(BaseModel):
    id: str
    name: str
    framework: ComplianceFramework = ComplianceFramework.CUSTOM
    status: PolicyStatus = PolicyStatus.ACTIVE
    description: str = ""


class EvidenceModel(BaseModel):
    type: EvidenceType = EvidenceType.OTHER
    description: str
    data: str = ""


class ViolationRequest(BaseModel):
    """Manually reported violation."""
    policy_id: str = "system"
    policy_name: str = "Manual Report"
    asset_id: str
    asset_type: AssetType
    asset_identifier: str
    severity: Severity
    title: str
    description: str
    evidence: list[EvidenceModel] = Field(default_factory=list)


class ViolationStatusRequest(BaseModel):
    status: ViolationStatus


class IncidentUpdateRequest(BaseModel):
    """Fields merged into an incident."""
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[IncidentStatus] = None
    priority: Optional[Priority] = None
    assignee: Optional[str] = None


class IncidentEventRequest(BaseModel):
    type: IncidentEventType = IncidentEventType.COMMENT
    description: str
    actor: Optional[str] = None
    data: Optional[dict[str, Any]] = None


class ScanRequest(BaseModel):
    timeout: Optional[float] = Field(default=None, gt=0)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    scan_in_progress: bool
    uptime_seconds: float


# === Application ===

def create_app(agent: Optional[ComplianceAgent] = None) -> FastAPI:
    """Build the control API around an agent (default: one built from settings)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.startup_time = time.time()
        logger.info(
            "Comply Agent API starting",
            host=settings.host,
            port=settings.port,
            playbooks=len(app.state.agent.executor.get_all_playbooks()),
        )

        yield

        logger.info("Comply Agent API shutting down")
        await app.state.agent.close()

    app = FastAPI(
        title="Comply Agent",
        description="Compliance violation detection and automated response",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.agent = agent or ComplianceAgent(settings)
    app.state.startup_time = time.time()

    def get_agent(request: Request) -> ComplianceAgent:
        return request.app.state.agent

    # === Health ===

    @app.get("/health", response_model=HealthResponse, tags=["Info"])
    async def health(request: Request):
        """Basic health check."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            scan_in_progress=get_agent(request).scan_in_progress,
            uptime_seconds=round(time.time() - request.app.state.startup_time, 2),
        )

    @app.get("/stats", tags=["Info"])
    async def stats(request: Request):
        return get_agent(request).get_stats()

    # === Assets & Facts ===

    @app.get("/assets", tags=["Assets"])
    async def list_assets(request: Request):
        return [a.to_dict() for a in get_agent(request).inventory.get_assets()]

    @app.post("/assets", status_code=201, tags=["Assets"])
    async def add_asset(body: AssetRequest, request: Request):
        agent = get_agent(request)
        asset = agent.inventory.add_asset(
            body.type,
            body.identifier,
            body.organization_id or agent.config.organization_id,
        )
        return asset.to_dict()

    @app.put("/facts/domain", tags=["Assets"])
    async def put_domain_facts(body: DomainFactsRequest, request: Request):
        record = DomainRecord(
            domain=body.domain,
            dns_records=[DNSRecord(r.type, r.name, r.value, r.ttl) for r in body.dns_records],
            registrar=body.registrar,
            nameservers=body.nameservers,
        )
        get_agent(request).inventory.set_domain_info(record)
        return {"status": "cached", "identifier": body.domain}

    @app.put("/facts/ip", tags=["Assets"])
    async def put_ip_facts(body: IPFactsRequest, request: Request):
        get_agent(request).inventory.set_ip_info(IPRecord(**body.model_dump()))
        return {"status": "cached", "identifier": body.ip}

    @app.put("/facts/certificate", tags=["Assets"])
    async def put_certificate_facts(body: CertificateFactsRequest, request: Request):
        get_agent(request).inventory.set_certificate_info(CertificateInfo(**body.model_dump()))
        return {"status": "cached", "identifier": body.domain}

    # === Policies ===

    @app.get("/policies", tags=["Policies"])
    async def list_policies(request: Request):
        return [p.to_dict() for p in get_agent(request).get_policies()]

    @app.post("/policies", status_code=201, tags=["Policies"])
    async def add_policy(body: PolicyRequest, request: Request):
        policy = Policy(**body.model_dump())
        get_agent(request).add_policy(policy)
        return policy.to_dict()

    # === Scans ===

    @app.post("/scan", tags=["Scan"])
    async def run_scan(request: Request, body: Optional[ScanRequest] = None):
        """Run detection and response over all monitored assets."""
        result = await get_agent(request).run_scan(timeout=body.timeout if body else None)
        return result.to_dict()

    @app.post("/scan/cancel", tags=["Scan"])
    async def cancel_scan(request: Request):
        return {"cancelled": get_agent(request).cancel_scan()}

    # === Violations ===

    @app.get("/violations", tags=["Violations"])
    async def list_violations(
        request: Request,
        status: Optional[ViolationStatus] = None,
        severity: Optional[Severity] = None,
    ):
        violations = get_agent(request).detector.get_all_violations()
        if status:
            violations = [v for v in violations if v.status == status]
        if severity:
            violations = [v for v in violations if v.severity == severity]
        return [v.to_dict() for v in violations]

    @app.get("/violations/stats", tags=["Violations"])
    async def violation_stats(request: Request):
        return get_agent(request).detector.get_stats()

    @app.post("/violations", status_code=201, tags=["Violations"])
    async def create_violation(body: ViolationRequest, request: Request):
        violation = get_agent(request).detector.create_violation(
            policy_id=body.policy_id,
            policy_name=body.policy_name,
            asset_id=body.asset_id,
            asset_type=body.asset_type,
            asset_identifier=body.asset_identifier,
            severity=body.severity,
            title=body.title,
            description=body.description,
            evidence=[
                ViolationEvidence(type=e.type, description=e.description, data=e.data)
                for e in body.evidence
            ],
        )
        return violation.to_dict()

    @app.get("/violations/{violation_id}", tags=["Violations"])
    async def get_violation(violation_id: str, request: Request):
        violation = get_agent(request).detector.get_violation(violation_id)
        if violation is None:
            raise HTTPException(status_code=404, detail=f"Violation {violation_id} not found")
        return violation.to_dict()

    @app.patch("/violations/{violation_id}/status", tags=["Violations"])
    async def update_violation_status(violation_id: str, body: ViolationStatusRequest, request: Request):
        try:
            violation = get_agent(request).detector.update_violation_status(violation_id, body.status)
        except InvalidStatusTransition as e:
            raise HTTPException(status_code=409, detail=str(e))
        if violation is None:
            raise HTTPException(status_code=404, detail=f"Violation {violation_id} not found")
        return violation.to_dict()

    @app.post("/violations/{violation_id}/respond", tags=["Violations"])
    async def respond_to_violation(violation_id: str, request: Request):
        """Run the response playbooks for one violation."""
        agent = get_agent(request)
        violation = agent.detector.get_violation(violation_id)
        if violation is None:
            raise HTTPException(status_code=404, detail=f"Violation {violation_id} not found")
        incidents = await agent.executor.execute_playbooks(violation)
        return [i.to_dict() for i in incidents]

    # === Incidents ===

    @app.get("/incidents", tags=["Incidents"])
    async def list_incidents(request: Request, status: Optional[IncidentStatus] = None):
        manager = get_agent(request).incidents
        incidents = manager.get_incidents_by_status(status) if status else manager.get_all_incidents()
        return [i.to_dict() for i in incidents]

    @app.get("/incidents/{incident_id}", tags=["Incidents"])
    async def get_incident(incident_id: str, request: Request):
        incident = get_agent(request).incidents.get_incident(incident_id)
        if incident is None:
            raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
        return incident.to_dict()

    @app.patch("/incidents/{incident_id}", tags=["Incidents"])
    async def update_incident(incident_id: str, body: IncidentUpdateRequest, request: Request):
        incident = get_agent(request).incidents.update_incident(
            incident_id, **body.model_dump(exclude_unset=True, exclude_none=True)
        )
        if incident is None:
            raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
        return incident.to_dict()

    @app.post("/incidents/{incident_id}/events", status_code=201, tags=["Incidents"])
    async def add_incident_event(incident_id: str, body: IncidentEventRequest, request: Request):
        manager = get_agent(request).incidents
        incident = manager.get_incident(incident_id)
        if incident is None:
            raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
        event = manager.add_event(incident, body.type, body.description, body.actor, body.data)
        return event.to_dict()

    # === Playbooks ===

    @app.get("/playbooks", tags=["Playbooks"])
    async def list_playbooks(request: Request):
        return [p.to_dict() for p in get_agent(request).executor.get_all_playbooks()]

    @app.post("/playbooks", status_code=201, tags=["Playbooks"])
    async def add_playbook(body: dict[str, Any], request: Request):
        try:
            playbook = Playbook.from_dict(body)
        except PlaybookDefinitionError as e:
            raise HTTPException(status_code=400, detail=str(e))
        get_agent(request).executor.add_playbook(playbook)
        return playbook.to_dict()

    @app.get("/playbooks/{playbook_id}", tags=["Playbooks"])
    async def get_playbook(playbook_id: str, request: Request):
        playbook = get_agent(request).executor.get_playbook(playbook_id)
        if playbook is None:
            raise HTTPException(status_code=404, detail=f"Playbook {playbook_id} not found")
        return playbook.to_dict()

    @app.post("/playbooks/{playbook_id}/enable", tags=["Playbooks"])
    async def enable_playbook(playbook_id: str, request: Request):
        if not get_agent(request).executor.toggle_playbook(playbook_id, True):
            raise HTTPException(status_code=404, detail=f"Playbook {playbook_id} not found")
        return {"id": playbook_id, "enabled": True}

    @app.post("/playbooks/{playbook_id}/disable", tags=["Playbooks"])
    async def disable_playbook(playbook_id: str, request: Request):
        if not get_agent(request).executor.toggle_playbook(playbook_id, False):
            raise HTTPException(status_code=404, detail=f"Playbook {playbook_id} not found")
        return {"id": playbook_id, "enabled": False}

    @app.delete("/playbooks/{playbook_id}", tags=["Playbooks"])
    async def delete_playbook(playbook_id: str, request: Request):
        if not get_agent(request).executor.delete_playbook(playbook_id):
            raise HTTPException(status_code=404, detail=f"Playbook {playbook_id} not found")
        return {"id": playbook_id, "deleted": True}

    @app.get("/executions", tags=["Playbooks"])
    async def execution_history(request: Request, limit: Optional[int] = None):
        agent = get_agent(request)
        entries = agent.executor.get_execution_history(limit or agent.config.execution_history_limit)
        return [e.to_dict() for e in entries]

    # === Detection Rules ===

    @app.get("/rules", tags=["Rules"])
    async def list_rules(request: Request):
        return [r.to_dict() for r in get_agent(request).detector.get_all_rules()]

    @app.post("/rules/{rule_id}/enable", tags=["Rules"])
    async def enable_rule(rule_id: str, request: Request):
        if not get_agent(request).detector.toggle_rule(rule_id, True):
            raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found")
        return {"id": rule_id, "enabled": True}

    @app.post("/rules/{rule_id}/disable", tags=["Rules"])
    async def disable_rule(rule_id: str, request: Request):
        if not get_agent(request).detector.toggle_rule(rule_id, False):
            raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found")
        return {"id": rule_id, "enabled": False}

    return app


app = create_app()


def main() -> None:
    """Run the control API with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
