"""media/ -- Filesystem-backed media browsing confined to one root directory.

Layer rule: media/ imports from core/ and auth/ only. It does NOT import
from api/.
"""
