"""auth/ -- Authentication, authorization, and user lifecycle for the gallery.

Layer rule: auth/ imports only from core/ plus stdlib and third-party
libraries. It does NOT import from api/ or media/. api/ and media/ import
from auth/, not the other way around.
"""
