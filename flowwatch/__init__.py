"""
FlowWatch: river-flow forecast alerting.

Architecture:
    flowwatch/
    ├── api/             # FastAPI on-demand trigger (HTTP layer)
    ├── alerting/        # Evaluator, preferences, dedup history, dispatcher, push
    ├── cache/           # Key-value stores + read-through forecast/threshold caches
    ├── db/              # SQLAlchemy models, engine, SQL-backed stores
    ├── monitoring/      # Orchestrator (fan-out) + APScheduler periodic trigger
    └── sources/         # HTTP clients for forecast and return-period APIs

Data Flow:
    Scheduler / API → Orchestrator → Preferences → Forecast + Threshold caches
    → Evaluator → History (dedup) → Dispatcher → Push → History (record)

Version: 1.0.0
"""

__version__ = "1.0.0"
