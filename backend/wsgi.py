# backend/wsgi.py
from cellarpos import create_app

app = create_app()
