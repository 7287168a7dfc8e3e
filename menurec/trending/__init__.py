"""
Trending and seasonal popularity signals.

Responsibilities:
- Aggregate recent interactions per item over day, week and month windows.
- Learn which items are popular per season and meal period.
- Serve both as pure reads over the last completed analysis.
"""
