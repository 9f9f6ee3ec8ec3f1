"""
Tests for the Control API

Tests the FastAPI app including health, asset facts, scans, violations,
incidents, playbooks and detection rules.
"""

import pytest
from fastapi.testclient import TestClient

from comply_agent.agent import ComplianceAgent
from comply_agent.gateway.app import create_app
from comply_agent.orchestrator.playbooks import (
    ActionConfig,
    ActionKind,
    Playbook,
    PlaybookStep,
    PlaybookTrigger,
    StepConfig,
    StepType,
)
from comply_agent.store.models import Severity


def escalation_playbook():
    return Playbook(
        id="escalate-critical",
        name="Escalate Critical",
        trigger=PlaybookTrigger(severity=[Severity.CRITICAL]),
        steps=[
            PlaybookStep(
                id="open",
                name="Create Incident",
                type=StepType.ACTION,
                config=StepConfig(action=ActionConfig(ActionKind.CREATE_INCIDENT)),
                on_success="escalate",
            ),
            PlaybookStep(
                id="escalate",
                name="Escalate",
                type=StepType.ACTION,
                config=StepConfig(action=ActionConfig(ActionKind.ESCALATE)),
            ),
        ],
    )


@pytest.fixture
def agent(test_settings):
    return ComplianceAgent(config=test_settings, playbooks=[escalation_playbook()])


@pytest.fixture
def test_client(agent):
    """Create test client around a fresh agent."""
    return TestClient(create_app(agent))


@pytest.fixture
def violation(test_client):
    response = test_client.post("/violations", json={
        "asset_id": "web-1",
        "asset_type": "domain",
        "asset_identifier": "shop.example.com",
        "severity": "critical",
        "title": "Public admin panel",
        "description": "Admin panel reachable without VPN",
        "evidence": [{"type": "screenshot", "description": "login page", "data": "base64..."}],
    })
    assert response.status_code == 201
    return response.json()


class TestInfoEndpoints:
    """Tests for health and stats."""

    def test_health_check(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["scan_in_progress"] is False
        assert "version" in data

    def test_stats(self, test_client):
        data = test_client.get("/stats").json()

        assert data["assets"] == 0
        assert data["soar"]["total_playbooks"] == 1


class TestAssetsAndScan:
    """Tests for asset registration, fact caching and scans."""

    def test_register_and_list_assets(self, test_client):
        response = test_client.post("/assets", json={"type": "ip", "identifier": "192.0.2.10"})
        assert response.status_code == 201
        assert response.json()["organization_id"] == "default"

        assets = test_client.get("/assets").json()
        assert [a["identifier"] for a in assets] == ["192.0.2.10"]

    def test_invalid_asset_type(self, test_client):
        response = test_client.post("/assets", json={"type": "mainframe", "identifier": "x"})
        assert response.status_code == 422

    def test_scan_with_cached_facts(self, test_client):
        test_client.post("/assets", json={"type": "certificate", "identifier": "pay.example.com"})
        test_client.put("/facts/certificate", json={"domain": "pay.example.com", "days_until_expiry": 2})
        test_client.post("/assets", json={"type": "domain", "identifier": "pay.example.com"})
        test_client.put("/facts/domain", json={
            "domain": "pay.example.com",
            "dns_records": [
                {"type": "TXT", "name": "pay.example.com", "value": "v=spf1 -all"},
                {"type": "TXT", "name": "_dmarc.pay.example.com", "value": "v=DMARC1; p=reject"},
            ],
        })
        test_client.post("/assets", json={"type": "ip", "identifier": "198.51.100.66"})
        test_client.put("/facts/ip", json={"ip": "198.51.100.66", "reputation": "good", "is_tor": True})

        response = test_client.post("/scan", json={"timeout": 5})
        assert response.status_code == 200

        data = response.json()
        assert data["timed_out"] is False
        assert sorted(v["title"] for v in data["violations"]) == [
            "Certificate Expiring in 2 Days",
            "Tor Exit Node Detected",
        ]
        assert len(data["incidents"]) == 1
        assert data["incidents"][0]["priority"] == "P1"

        history = test_client.get("/executions").json()
        assert history[0]["playbook_id"] == "escalate-critical"
        assert history[0]["result"] == "success"

    def test_scan_without_body(self, test_client):
        response = test_client.post("/scan")
        assert response.status_code == 200
        assert response.json()["violations"] == []

    def test_cancel_without_scan(self, test_client):
        assert test_client.post("/scan/cancel").json() == {"cancelled": False}


class TestPolicies:
    """Tests for policy endpoints."""

    def test_add_policy(self, test_client):
        response = test_client.post("/policies", json={"id": "p-1", "name": "PCI Scope", "framework": "PCI-DSS"})
        assert response.status_code == 201
        assert response.json()["framework"] == "PCI-DSS"

        assert [p["id"] for p in test_client.get("/policies").json()] == ["p-1"]


class TestViolationEndpoints:
    """Tests for violation endpoints."""

    def test_get_violation(self, test_client, violation):
        data = test_client.get(f"/violations/{violation['id']}").json()

        assert data["status"] == "open"
        assert data["evidence"][0]["type"] == "screenshot"

    def test_unknown_violation(self, test_client):
        assert test_client.get("/violations/missing").status_code == 404
        assert test_client.patch("/violations/missing/status", json={"status": "resolved"}).status_code == 404
        assert test_client.post("/violations/missing/respond").status_code == 404

    def test_filters(self, test_client, violation):
        assert len(test_client.get("/violations", params={"severity": "critical"}).json()) == 1
        assert test_client.get("/violations", params={"severity": "low"}).json() == []
        assert len(test_client.get("/violations", params={"status": "open"}).json()) == 1

    def test_status_transitions(self, test_client, violation):
        url = f"/violations/{violation['id']}/status"

        response = test_client.patch(url, json={"status": "resolved"})
        assert response.status_code == 200
        assert response.json()["resolved_at"] is not None

        response = test_client.patch(url, json={"status": "investigating"})
        assert response.status_code == 409

    def test_violation_stats(self, test_client, violation):
        data = test_client.get("/violations/stats").json()
        assert data["total"] == 1
        assert data["by_severity"]["critical"] == 1

    def test_respond(self, test_client, violation):
        response = test_client.post(f"/violations/{violation['id']}/respond")
        assert response.status_code == 200

        incidents = response.json()
        assert len(incidents) == 1
        assert incidents[0]["violation_ids"] == [violation["id"]]
        assert [e["type"] for e in incidents[0]["timeline"]] == ["created", "escalation"]


class TestIncidentEndpoints:
    """Tests for incident endpoints."""

    @pytest.fixture
    def incident(self, test_client, violation):
        return test_client.post(f"/violations/{violation['id']}/respond").json()[0]

    def test_list_and_get(self, test_client, incident):
        assert [i["id"] for i in test_client.get("/incidents").json()] == [incident["id"]]
        assert test_client.get("/incidents", params={"status": "closed"}).json() == []
        assert test_client.get(f"/incidents/{incident['id']}").json()["title"] == "Public admin panel"
        assert test_client.get("/incidents/missing").status_code == 404

    def test_patch_incident(self, test_client, incident):
        response = test_client.patch(f"/incidents/{incident['id']}", json={"status": "closed"})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "closed"
        assert data["assignee"] is None
        assert data["updated_at"] != incident["updated_at"]
        assert len(data["timeline"]) == len(incident["timeline"])

    def test_patch_null_fields_are_ignored(self, test_client, incident):
        url = f"/incidents/{incident['id']}"

        response = test_client.patch(url, json={"status": None, "priority": None, "assignee": "alice"})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "open"
        assert data["priority"] == incident["priority"]
        assert data["assignee"] == "alice"
        assert data["resolved_at"] is None

        assert test_client.get("/incidents").status_code == 200
        assert test_client.get("/incidents", params={"status": "open"}).json()[0]["id"] == incident["id"]

    def test_close_sets_resolved_at(self, test_client, incident):
        data = test_client.patch(f"/incidents/{incident['id']}", json={"status": "closed"}).json()

        assert data["resolved_at"] == data["updated_at"]

    def test_patch_unknown_incident(self, test_client):
        assert test_client.patch("/incidents/missing", json={"status": "closed"}).status_code == 404

    def test_add_event(self, test_client, incident):
        response = test_client.post(
            f"/incidents/{incident['id']}/events",
            json={"description": "Checked with owner", "actor": "alice"},
        )
        assert response.status_code == 201
        assert response.json()["type"] == "comment"

        timeline = test_client.get(f"/incidents/{incident['id']}").json()["timeline"]
        assert timeline[-1]["actor"] == "alice"


class TestPlaybookEndpoints:
    """Tests for playbook management."""

    def test_list_playbooks(self, test_client):
        playbooks = test_client.get("/playbooks").json()
        assert [p["id"] for p in playbooks] == ["escalate-critical"]
        assert playbooks[0]["trigger"]["conditions"]["severity"] == ["critical"]

    def test_create_playbook(self, test_client):
        response = test_client.post("/playbooks", json={
            "id": "notify-high",
            "name": "Notify High",
            "trigger": {"type": "violation", "conditions": {"severity": ["high"]}},
            "steps": [{
                "id": "tell",
                "type": "notification",
                "config": {"notification": {"channel": "slack", "template": "{{violation.title}}"}},
            }],
        })
        assert response.status_code == 201
        assert test_client.get("/playbooks/notify-high").json()["steps"][0]["type"] == "notification"

    def test_create_invalid_playbook(self, test_client):
        response = test_client.post("/playbooks", json={"id": "broken", "steps": [{"id": "s", "type": "teleport"}]})
        assert response.status_code == 400

    @pytest.mark.parametrize("body", [
        {"id": "broken", "trigger": "violation"},
        {"id": "broken", "trigger": {"conditions": "critical"}},
        {"id": "broken", "steps": ["create_incident"]},
        {"id": "broken", "steps": [{"id": "s", "type": "action", "config": "create_incident"}]},
    ])
    def test_create_malformed_playbook(self, test_client, body):
        response = test_client.post("/playbooks", json=body)

        assert response.status_code == 400
        assert test_client.get("/playbooks/broken").status_code == 404

    def test_toggle_and_delete(self, test_client):
        assert test_client.post("/playbooks/escalate-critical/disable").json()["enabled"] is False
        assert test_client.get("/playbooks/escalate-critical").json()["enabled"] is False
        assert test_client.post("/playbooks/escalate-critical/enable").json()["enabled"] is True

        assert test_client.delete("/playbooks/escalate-critical").status_code == 200
        assert test_client.get("/playbooks/escalate-critical").status_code == 404
        assert test_client.delete("/playbooks/escalate-critical").status_code == 404
        assert test_client.post("/playbooks/missing/enable").status_code == 404

    def test_execution_history_limit(self, test_client, violation):
        for _ in range(3):
            test_client.post(f"/violations/{violation['id']}/respond")

        assert len(test_client.get("/executions", params={"limit": 2}).json()) == 2
        assert len(test_client.get("/executions").json()) == 3


class TestRuleEndpoints:
    """Tests for detection rule toggles."""

    def test_list_rules(self, test_client):
        rules = {r["id"]: r for r in test_client.get("/rules").json()}

        assert rules["ip-suspicious"]["enabled"] is False
        assert rules["cert-expiry-critical"]["severity"] == "critical"

    def test_toggle_rule(self, test_client):
        assert test_client.post("/rules/ip-suspicious/enable").json() == {"id": "ip-suspicious", "enabled": True}
        assert test_client.post("/rules/ip-tor-exit/disable").status_code == 200
        assert test_client.post("/rules/unknown/enable").status_code == 404
