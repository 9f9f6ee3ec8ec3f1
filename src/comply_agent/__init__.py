"""
Comply Agent: Compliance Violation Response Engine

Detects compliance violations on monitored infrastructure assets and
correlates them with automated response playbooks that open incidents,
notify stakeholders and trigger remediation.
"""

__version__ = "0.1.0"

from comply_agent.config.settings import Settings

__all__ = ["Settings", "__version__"]
