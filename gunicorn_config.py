# Server Socket
bind = "127.0.0.1:8000"  # NGINX terminates TLS; browsers need a secure context for the camera

# Worker Settings
# One process owns the station camera; concurrency comes from threads
workers = 1
threads = 8
worker_class = "gthread"

# Security & Performance
timeout = 60
graceful_timeout = 30
keepalive = 5

# Logging
accesslog = "log/gunicorn/access.log"
errorlog = "log/gunicorn/error.log"
loglevel = "info"

# Process Name
proc_name = "rsvp_checkin_gunicorn"
