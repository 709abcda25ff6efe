"""
Procurement Kernel

The structural core of the procurement lifecycle engine:
- Typed error hierarchy with machine-readable codes
- Structured JSON logging with transition-scoped context
- Injectable clock, workflow value objects, decimal helpers
- SQLAlchemy base, engine/session management, append-only guards
"""

__version__ = "0.1.0"
