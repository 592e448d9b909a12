'''
Call Analytics Backend Test Suite

Test Modules:
-------------
- test_conversation_analyzer.py: Transcript signals
  - Sentiment vocabulary scoring and caps
  - BANT objectives and lead score
  - Quality score bounds [1.0, 5.0]

- test_aggregate_queries.py: Delta UPDATE builder
  - Relative assignments, merging, whitelist enforcement
  - 1-based rating buckets, aggregate keys

- test_aggregation.py: Aggregation updater
  - Per-event plans, commutativity, concurrency
  - Idempotency ledger, failure isolation, call markers

- test_alerts.py: Alert thresholds and Slack publishing
- test_event_router.py: Dispatch and unknown event types
- test_ingestion.py: End-to-end pipeline and failure policy
- test_webhook_adapter.py: VAPI signatures and payload translation
- test_api.py: FastAPI routers via TestClient
- test_store.py: PostgreSQL statements, housekeeping and pool lifecycle

Running Tests:
--------------
    pip install -e ".[test]"
    pytest call_analytics/tests/ -v

Test Dependencies:
------------------
- pytest
- pytest-asyncio (asyncio_mode = "auto")
- httpx (FastAPI TestClient)

Configuration:
--------------
See conftest.py for shared fixtures, the in-memory aggregate store and the
event factory.
'''

__all__ = []
