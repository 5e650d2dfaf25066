"""
Elastic Beanstalk Entry Point
"""
import sys
import os

# Add the current directory to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from backend.config import configure_logging, load_settings
from backend.app import create_app

settings = load_settings()
configure_logging(settings.log_level)

# Beanstalk looks for a module-level "application"
application = create_app(settings=settings, start_workers=True)

# For local testing
if __name__ == "__main__":
    application.run(debug=True, use_reloader=False)
