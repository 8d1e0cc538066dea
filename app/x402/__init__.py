"""
x402 Payment Protocol Integration Module.

This module implements the x402 challenge/response protocol for the Sentience
server, enabling pay-per-request access to gated resources.

Key components:
- requirements: Payment requirement construction and base64 transport encoding
- facilitator: Async client for the facilitator's /verify and /settle calls
- gates: Payment, identity, trust, spell and ownership gates plus the chain engine
- registry: Static route pricing table declaring each route's gates
- middleware: FastAPI middleware running the gate chain for registered routes
- errors: Typed gate rejections and their JSON responses
- audit: Transaction audit logging

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
