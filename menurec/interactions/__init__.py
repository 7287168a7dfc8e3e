"""
Interaction store and tracking.

Responsibilities:
- Append immutable user-item interaction events.
- Validate interaction types and rating values at the boundary.
- Feed ranking signals and experiment metrics (read asynchronously).
"""
