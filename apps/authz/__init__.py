"""
Authorization engine.

Provides multi-tenant access control with:
- A static permission and module catalog with role defaults
- Layered resolution (company gate, required-module floor, user override, role default)
- Role-hierarchy and company-isolation validation of access changes
- Batched, per-user atomic commits with baseline conflict detection
- Permission templates
- Append-only audit events with risk scoring
"""
