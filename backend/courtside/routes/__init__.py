# backend/courtside/routes/__init__.py
# All application routes are in v1/
from . import v1 as v1
