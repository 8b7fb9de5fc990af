"""
Prometheus metrics for job tracking.
"""
from prometheus_client import Counter, Gauge

# ============================================
# Job Metrics
# ============================================

jobs_submitted = Counter(
    'jobwatch_jobs_submitted_total',
    'Total jobs handed to the processing endpoint',
)

jobs_terminal = Counter(
    'jobwatch_jobs_terminal_total',
    'Jobs that reached a terminal state',
    ['outcome']
)

jobs_active = Gauge(
    'jobwatch_jobs_active',
    'Jobs currently being tracked'
)

late_events_dropped = Counter(
    'jobwatch_late_events_dropped_total',
    'Inputs dropped because the job was already terminal',
    ['source']
)

# ============================================
# Secondary Action Metrics
# ============================================

secondary_uploads = Counter(
    'jobwatch_secondary_uploads_total',
    'Secondary upload attempts by outcome',
    ['outcome']
)
