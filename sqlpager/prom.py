from prometheus_client import CollectorRegistry

# Single registry for every collector this service exposes on /metrics
REGISTRY = CollectorRegistry()
