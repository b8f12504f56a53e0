from prometheus_client import Counter, Histogram, generate_latest
from fastapi import Response

# Метрики для HTTP запросов
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Метрики для кэша
cache_hits_total = Counter('cache_hits_total', 'Total cache hits')
cache_misses_total = Counter('cache_misses_total', 'Total cache misses')

# Метрики загрузки
uploads_initiated_total = Counter('uploads_initiated_total', 'Total upload sessions initiated')
upload_chunks_total = Counter('upload_chunks_total', 'Total chunks accepted')
upload_chunk_bytes_total = Counter('upload_chunk_bytes_total', 'Total chunk bytes accepted')
uploads_completed_total = Counter(
    'uploads_completed_total',
    'Finished processing jobs',
    ['status']
)
upload_processing_seconds = Histogram('upload_processing_seconds', 'Processing job duration in seconds')

def metrics_endpoint():
    """Endpoint для Prometheus метрик"""
    return Response(content=generate_latest(), media_type="text/plain")
