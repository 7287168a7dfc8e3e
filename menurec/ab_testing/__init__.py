"""
Online experiments over recommendation algorithms.

Responsibilities:
- Create, list and stop experiments comparing a control and a treatment algorithm.
- Assign users to variants deterministically from their id.
- Collect impressions and interactions per variant and test them for significance.
"""
