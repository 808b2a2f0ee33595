"""recordeval_server — FastAPI REST API for the recordeval SDK.

Exposes the EvaluationPipeline over HTTP: session management, eligibility
and checklist evaluation, stateless matching, record chat, and reference
data endpoints.
"""
