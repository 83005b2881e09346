# /botrix/utils/metrics.py

from prometheus_client import Counter, Histogram

# This file defines all Prometheus metrics used for application monitoring.
# Centralizing them here makes them easy to find and manage.

# Flow Engine Metrics
flow_turn_counter = Counter('flow_turns_total', 'Conversation turns executed', ['status'])
flow_node_counter = Counter('flow_node_executions_total', 'Flow nodes executed', ['node_type'])
api_call_counter = Counter('flow_api_calls_total', 'Outbound calls made by api_call nodes', ['status'])
flow_validation_counter = Counter('flow_validations_total', 'Flow validations', ['result'])

# Webhook Metrics
webhook_request_counter = Counter('webhook_requests_total', 'Inbound webhook requests', ['status'])

# Performance Metrics
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])
