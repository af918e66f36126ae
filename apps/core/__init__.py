"""
Core application: shared model bases, exceptions, logging, caching,
Celery task base class and request tracing.
"""
