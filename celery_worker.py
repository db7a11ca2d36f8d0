"""
Celery entry point for running worker commands.

Usage:
    celery -A celery_worker worker --loglevel=info --pool=solo
"""
from app import create_app
from app.celery_app import celery_app

# create_app binds Celery to the Flask app and registers the task modules
flask_app = create_app()

# This makes the celery_app available for command line
if __name__ == '__main__':
    celery_app.start()
