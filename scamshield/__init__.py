"""
ScamShield risk core: concurrent scam-risk aggregation behind a tier-aware rate limiter.

Fans a subject (group members, message content, asset symbol) out to independent
analyzers, folds multi-model AI verdicts through an ensemble, and merges all
signals into one confidence-weighted verdict. Modular layout: quota store, cache,
analyzers, ensemble, aggregator, rate limiter, API server.
"""

__version__ = "0.1.0"
