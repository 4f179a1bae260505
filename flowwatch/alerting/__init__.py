"""
FlowWatch Alerting.

Components:
- evaluator: highest-threshold-wins matching of forecast points
- preferences: active user resolution and quiet hours
- history: alert history store (dedup + audit)
- dispatcher: formatting, delivery, recording
- push: push-delivery transports
"""
