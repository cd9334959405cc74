"""
Gunicorn settings for the SDA Back Office API.

Most calls are short JSON reads. Two are slow: rendering a contract PDF
and the daily cron run, which bills every organization inside a single
request, so the timeout is sized for the cron call.
"""
import multiprocessing
import os


def _env_int(name, default):
    return int(os.environ.get(name, default))


bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")

# gthread keeps one worker responsive while a sibling thread renders a PDF
worker_class = "gthread"
workers = _env_int("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1)
threads = _env_int("GUNICORN_THREADS", 4)

timeout = _env_int("GUNICORN_TIMEOUT", 300)
graceful_timeout = 30
keepalive = 5

# Recycle workers so a leak in PDF rendering cannot grow without bound
max_requests = _env_int("GUNICORN_MAX_REQUESTS", 1000)
max_requests_jitter = 50

# Behind nginx, which sets X-Forwarded-Proto for SECURE_PROXY_SSL_HEADER
forwarded_allow_ips = os.environ.get("GUNICORN_FORWARDED_ALLOW_IPS", "127.0.0.1")

accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")

proc_name = "sda-backoffice"
preload_app = True
worker_tmp_dir = "/dev/shm"


def post_fork(server, worker):
    server.log.info("Worker %s ready (%s threads)", worker.pid, threads)
