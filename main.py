#!/usr/bin/env python3
"""
Main entry point for the Meetpoint API (development server)
"""

import os

from meetpoint.app import create_default_app

app = create_default_app()

if __name__ == '__main__':
    app.run(debug=True, host=os.getenv('HOST', '0.0.0.0'), port=int(os.getenv('PORT', '5001')))
