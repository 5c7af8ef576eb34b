"""
CIAG Governance Triage Pipeline.

Turns an operator's evidence into a risk register, a pilot readiness
recommendation, a pilot runbook and an integrity-hashed run manifest.
Every step is a file-in/file-out transformation that can be re-run.

Modules:
    errors - Fail-closed error taxonomy
    config - YAML layout configuration
    context - Operator Selection Record and RunContext
    artifacts - JSON/text I/O, write-if-changed, SHA256 hashing
    schemas - JSON Schema validation of input documents
    evidence - Evidence model, seeding and intake application
    register - Risk register CSV model
    derive - Risk register derivation from evidence
    policy - Evidence threshold policy
    recommendation - Recommendation document generator
    runbook - Pilot runbook generator
    manifest - Run manifest builder and validator
    funnel - Tier-1 lead selection and sales funnel artifacts
    steps - One function per pipeline step
    cli - Command-line interface entrypoints
"""

from . import errors
from . import config
from . import context
from . import artifacts
from . import schemas
from . import evidence
from . import register
from . import derive
from . import policy
from . import recommendation
from . import runbook
from . import manifest
from . import funnel
from . import steps
from . import cli

__version__ = "1.0.0"
