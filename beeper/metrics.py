from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

# Keep metrics module-level singletons
submissions_total = Counter("reminder_submissions_total", "Reminder submissions by outcome", ["status"])
jobs_saved_total = Counter("jobs_saved_total", "Jobs persisted via direct save")
error_count = Counter("error_count", "Total errors encountered by the service")
request_latency_seconds = Histogram("request_latency_seconds", "HTTP request latency seconds")

# Dispatcher metrics
armed_timers = Gauge("armed_timers", "Number of armed delivery timers")
deliveries_total = Counter("deliveries_total", "Delivery attempts by outcome", ["outcome"])
delivery_latency_seconds = Histogram("delivery_latency_seconds", "Notifier call latency seconds")
jobs_dropped_total = Counter("jobs_dropped_total", "Jobs dropped without delivery", ["reason"])

# Change notification metrics
active_subscribers = Gauge("active_subscribers", "Connected change-notification subscribers")
broadcasts_total = Counter("broadcasts_total", "Pending-list change broadcasts")


def metrics_response():
    # Return prometheus metrics as a Response
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
