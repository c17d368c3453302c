#!/usr/bin/env python3
"""
Celery worker and beat entry point for the deadline sweep.

    celery -A celery_worker worker -Q maintenance
    celery -A celery_worker beat
"""

from symposium.core.celery_app import celery_app

if __name__ == '__main__':
    celery_app.start()
