"""
Signal Bridge Service.

Distributes trading signals from the upstream generator to polling
execution clients (EAs):
1. Request signals from the generator for each timeframe/tier (hourly)
2. Score each signal and drop the ones below the quality threshold
3. Fan out one sized command per eligible account in one atomic batch
4. Hand commands to EAs on poll, record their execution reports
5. Track each account's daily profit target and loss limit

Architecture:
    Scheduler → Upstream generator (HTTP) → QualityScorer
              ↓
              CommandDispatcher → Document store (Redis) ← EA poll/report (HTTP)
"""

__version__ = "0.1.0"
