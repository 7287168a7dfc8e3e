"""
Recommendation engine.

Responsibilities:
- Validate the request context once, at the boundary.
- Score available menu items with collaborative, content-based, neural
  and trending strategies, alone or blended.
- Apply context boosts, exclusion of recently bought items and category
  diversity before returning the top results.
- Choose the algorithm per user when an experiment is running.
"""
