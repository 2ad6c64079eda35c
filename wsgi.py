# wsgi.py
from stampwallet import create_app

app = create_app()
